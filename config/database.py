"""
Database Configuration and Management (SQLAlchemy)

Durable record of watches, dismissed-watch history, saved configurations and
last known container placements. Every helper opens its own session, so each
table is written independently of the others.
"""

from pathlib import Path
from datetime import datetime
import logging
from sqlalchemy import create_engine, select, delete, update, func
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from config import settings
from config.models import Base, Watch, HistoryEntry, SavedConfig, Placement

logger = logging.getLogger(__name__)

WATCH_FIELDS = (
    'id', 'target_handle', 'match_spec', 'interval_seconds', 'state', 'found_at',
    'next_refresh_at', 'session_kind', 'reset_cycle_count', 'source_url',
    'display_label', 'recovery_error', 'created_at',
)


def _make_engine(database_url):
    url = make_url(database_url)
    connect_args = {}
    if url.get_backend_name() == 'sqlite':
        # Timer, dispatcher and web threads share the engine
        connect_args['check_same_thread'] = False
        if url.database and url.database != ':memory:':
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, echo=False, connect_args=connect_args)


engine = None
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def init_database(database_url=None):
    """
    Bind the engine and create all tables.

    Args:
        database_url (str, optional): SQLAlchemy URL, defaults to settings.DATABASE_URL
    """
    global engine
    database_url = database_url or settings.DATABASE_URL
    logger.info(f"Initializing database at {database_url}")

    if engine is not None:
        engine.dispose()
    engine = _make_engine(database_url)
    SessionLocal.configure(bind=engine)
    Base.metadata.create_all(bind=engine)


def get_db_session():
    """
    Get a new database session.

    Returns:
        sqlalchemy.orm.Session: Database session
    """
    if engine is None:
        init_database()
    return SessionLocal()


def watch_to_dict(watch):
    return {field: getattr(watch, field) for field in WATCH_FIELDS}


# --- Watches ---

def create_watch(watch_id, target_handle, match_spec, interval_seconds, source_url,
                 display_label='', session_kind='normal', next_refresh_at=None,
                 reset_cycle_count=0):
    """
    Create a new watch in the Active state.

    Returns:
        dict or None: The stored watch
    """
    session = get_db_session()
    try:
        watch = Watch(
            id=watch_id,
            target_handle=target_handle,
            match_spec=match_spec,
            interval_seconds=interval_seconds,
            state='active',
            session_kind=session_kind,
            reset_cycle_count=reset_cycle_count,
            source_url=source_url,
            display_label=display_label,
            next_refresh_at=next_refresh_at,
            created_at=datetime.now(),
        )
        session.add(watch)
        session.commit()
        logger.info(f"Created watch {watch_id} on target {target_handle}")
        return watch_to_dict(watch)
    except Exception as e:
        logger.error(f"Error creating watch: {e}")
        session.rollback()
        return None
    finally:
        session.close()


def get_watch(watch_id):
    """
    Get a single watch by id.
    """
    session = get_db_session()
    try:
        watch = session.get(Watch, watch_id)
        return watch_to_dict(watch) if watch else None
    except Exception as e:
        logger.error(f"Error fetching watch {watch_id}: {e}")
        return None
    finally:
        session.close()


def get_all_watches():
    """
    Get every stored watch, oldest first.
    """
    session = get_db_session()
    try:
        stmt = select(Watch).order_by(Watch.created_at.asc(), Watch.id.asc())
        return [watch_to_dict(w) for w in session.execute(stmt).scalars().all()]
    except Exception as e:
        logger.error(f"Error fetching watches: {e}")
        return []
    finally:
        session.close()


def get_watches_for_target(target_handle, states=None):
    """
    Get watches bound to a target, optionally filtered by state.

    Args:
        target_handle (str): Target handle
        states (iterable, optional): States to keep
    """
    if target_handle is None:
        return []
    session = get_db_session()
    try:
        stmt = select(Watch).where(Watch.target_handle == target_handle)
        if states:
            stmt = stmt.where(Watch.state.in_(list(states)))
        stmt = stmt.order_by(Watch.created_at.asc(), Watch.id.asc())
        return [watch_to_dict(w) for w in session.execute(stmt).scalars().all()]
    except Exception as e:
        logger.error(f"Error fetching watches for target {target_handle}: {e}")
        return []
    finally:
        session.close()


def get_watches_by_state(*states):
    session = get_db_session()
    try:
        stmt = (
            select(Watch)
            .where(Watch.state.in_(states))
            .order_by(Watch.created_at.asc(), Watch.id.asc())
        )
        return [watch_to_dict(w) for w in session.execute(stmt).scalars().all()]
    except Exception as e:
        logger.error(f"Error fetching watches by state {states}: {e}")
        return []
    finally:
        session.close()


def count_watches_by_state(state):
    session = get_db_session()
    try:
        stmt = select(func.count(Watch.id)).where(Watch.state == state)
        return session.execute(stmt).scalar_one()
    except Exception as e:
        logger.error(f"Error counting watches: {e}")
        return 0
    finally:
        session.close()


def update_watch(watch_id, **values):
    """
    Update fields of one watch.

    Returns:
        bool: True if a row was updated
    """
    return update_watches([watch_id], **values) > 0


def update_watches(watch_ids, **values):
    """
    Update the same fields on several watches.

    Returns:
        int: Number of rows updated
    """
    watch_ids = list(watch_ids)
    if not watch_ids:
        return 0
    session = get_db_session()
    try:
        stmt = update(Watch).where(Watch.id.in_(watch_ids)).values(**values)
        result = session.execute(stmt)
        session.commit()
        return result.rowcount
    except Exception as e:
        logger.error(f"Error updating watches {watch_ids}: {e}")
        session.rollback()
        return 0
    finally:
        session.close()


def delete_watch(watch_id):
    """
    Delete a specific watch.
    """
    session = get_db_session()
    try:
        result = session.execute(delete(Watch).where(Watch.id == watch_id))
        session.commit()
        return result.rowcount > 0
    except Exception as e:
        logger.error(f"Error deleting watch {watch_id}: {e}")
        session.rollback()
        return False
    finally:
        session.close()


def delete_watches_for_target(target_handle):
    """
    Delete every watch bound to a target.

    Returns:
        int: Number of deleted watches
    """
    session = get_db_session()
    try:
        result = session.execute(delete(Watch).where(Watch.target_handle == target_handle))
        session.commit()
        if result.rowcount > 0:
            logger.info(f"Deleted {result.rowcount} watches bound to target {target_handle}")
        return result.rowcount
    except Exception as e:
        logger.error(f"Error deleting watches for target {target_handle}: {e}")
        session.rollback()
        return 0
    finally:
        session.close()


# --- History ---

def add_history_entry(watch_id, snapshot, found_at, dismissed_at):
    """
    Append a dismissed watch snapshot.

    Returns:
        bool: True if stored
    """
    session = get_db_session()
    try:
        session.add(HistoryEntry(
            watch_id=watch_id,
            snapshot=snapshot,
            found_at=found_at,
            dismissed_at=dismissed_at,
        ))
        session.commit()
        return True
    except Exception as e:
        logger.error(f"Error adding history entry for watch {watch_id}: {e}")
        session.rollback()
        return False
    finally:
        session.close()


def get_history(limit=None):
    """
    Get history entries, newest first.
    """
    session = get_db_session()
    try:
        stmt = select(HistoryEntry).order_by(HistoryEntry.entry_id.desc())
        if limit:
            stmt = stmt.limit(limit)
        return [{
            'entry_id': h.entry_id,
            'watch_id': h.watch_id,
            'snapshot': h.snapshot,
            'found_at': h.found_at,
            'dismissed_at': h.dismissed_at,
        } for h in session.execute(stmt).scalars().all()]
    except Exception as e:
        logger.error(f"Error fetching history: {e}")
        return []
    finally:
        session.close()


def trim_history(limit):
    """
    Evict the oldest history entries beyond the limit.
    """
    session = get_db_session()
    try:
        keep = select(HistoryEntry.entry_id).order_by(HistoryEntry.entry_id.desc()).limit(limit)
        stmt = delete(HistoryEntry).where(HistoryEntry.entry_id.not_in(keep))
        result = session.execute(stmt)
        session.commit()
        return result.rowcount
    except Exception as e:
        logger.error(f"Error trimming history: {e}")
        session.rollback()
        return 0
    finally:
        session.close()


def delete_history_entry(entry_id):
    session = get_db_session()
    try:
        result = session.execute(delete(HistoryEntry).where(HistoryEntry.entry_id == entry_id))
        session.commit()
        return result.rowcount > 0
    except Exception as e:
        logger.error(f"Error deleting history entry {entry_id}: {e}")
        session.rollback()
        return False
    finally:
        session.close()


def clear_history():
    session = get_db_session()
    try:
        session.execute(delete(HistoryEntry))
        session.commit()
        return True
    except Exception as e:
        logger.error(f"Error clearing history: {e}")
        session.rollback()
        return False
    finally:
        session.close()


# --- Saved configurations ---

def _config_to_dict(config):
    return {
        'id': config.config_id,
        'name': config.name,
        'templates': config.templates,
        'created_at': config.created_at,
    }


def create_saved_config(config_id, name, templates, created_at):
    session = get_db_session()
    try:
        config = SavedConfig(config_id=config_id, name=name, templates=templates, created_at=created_at)
        session.add(config)
        session.commit()
        logger.info(f"Saved configuration '{name}' with {len(templates)} watches")
        return _config_to_dict(config)
    except Exception as e:
        logger.error(f"Error saving configuration '{name}': {e}")
        session.rollback()
        return None
    finally:
        session.close()


def get_saved_configs():
    """
    Get saved configurations, oldest first.
    """
    session = get_db_session()
    try:
        stmt = select(SavedConfig).order_by(SavedConfig.created_at.asc(), SavedConfig.config_id.asc())
        return [_config_to_dict(c) for c in session.execute(stmt).scalars().all()]
    except Exception as e:
        logger.error(f"Error fetching saved configurations: {e}")
        return []
    finally:
        session.close()


def get_saved_config(config_id):
    session = get_db_session()
    try:
        config = session.get(SavedConfig, config_id)
        return _config_to_dict(config) if config else None
    except Exception as e:
        logger.error(f"Error fetching configuration {config_id}: {e}")
        return None
    finally:
        session.close()


def delete_saved_config(config_id):
    session = get_db_session()
    try:
        result = session.execute(delete(SavedConfig).where(SavedConfig.config_id == config_id))
        session.commit()
        return result.rowcount > 0
    except Exception as e:
        logger.error(f"Error deleting configuration {config_id}: {e}")
        session.rollback()
        return False
    finally:
        session.close()


# --- Placements ---

def save_placement(normalized_url, placement):
    """
    Remember where the container for a URL was last shown.
    """
    if not normalized_url or not placement:
        return False
    session = get_db_session()
    try:
        row = session.get(Placement, normalized_url)
        if row is None:
            row = Placement(normalized_url=normalized_url)
            session.add(row)
        row.left = placement.get('left')
        row.top = placement.get('top')
        row.width = placement.get('width')
        row.height = placement.get('height')
        session.commit()
        return True
    except Exception as e:
        logger.error(f"Error saving placement for {normalized_url}: {e}")
        session.rollback()
        return False
    finally:
        session.close()


def get_placement(normalized_url):
    session = get_db_session()
    try:
        row = session.get(Placement, normalized_url)
        if row is None:
            return None
        return {'left': row.left, 'top': row.top, 'width': row.width, 'height': row.height}
    except Exception as e:
        logger.error(f"Error fetching placement for {normalized_url}: {e}")
        return None
    finally:
        session.close()
