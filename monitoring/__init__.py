"""
Monitoring Module

Contains the watch engine:
- Watch registry and per-target refresh scheduling
- Error recovery and ephemeral session resets
- Stuck-refresh watchdog
- Content evaluation and browser automation
- Notification systems
"""
