from typing import Optional

from sqlalchemy.orm import Session

import models


# --- Storage entry CRUD ---
def get_entry(db: Session, key: str) -> Optional[models.StorageEntry]:
    return db.query(models.StorageEntry).filter(models.StorageEntry.key == key).first()


def get_value(db: Session, key: str) -> Optional[str]:
    """Return the raw stored string for a key, or None if the key was never written."""
    entry = get_entry(db, key)
    if entry:
        return entry.value
    return None


def put_value(db: Session, key: str, value: str) -> models.StorageEntry:
    entry = get_entry(db, key)
    if entry is None:
        entry = models.StorageEntry(key=key, value=value)
    else:
        entry.value = value
    db.add(entry)  # add works for updates too
    db.commit()
    db.refresh(entry)
    return entry


def delete_value(db: Session, key: str) -> bool:
    entry = get_entry(db, key)
    if not entry:
        return False
    db.delete(entry)
    db.commit()
    return True
