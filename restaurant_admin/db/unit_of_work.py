from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from restaurant_admin.core.errors import ServiceError, StoreUnavailable, ValidationError


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or nothing at all."""
    try:
        yield db
        db.commit()
    except ServiceError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        raise ValidationError("Write violates a data constraint") from exc
    except DBAPIError as exc:
        db.rollback()
        raise StoreUnavailable("The store could not complete the write; retry later") from exc
    except Exception:
        db.rollback()
        raise
