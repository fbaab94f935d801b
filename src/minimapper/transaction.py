"""
Transaction scope for a `Database`.
"""
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from minimapper.connection import Database

logger = logging.getLogger(__name__)


class Transaction:
    """Context manager for running multiple commands in a transaction.

    Scopes nest: the database keeps a depth counter, so only the outermost
    scope commits, and an aborted inner scope makes the outermost one roll
    back. Leaving the block normally completes the scope; leaving it with an
    exception aborts it.

    Examples
        with db.transaction() as tx:
            db.execute('delete from ...', args)
            db.insert(article)
            tx.complete()   # optional, same as leaving the block
    """

    def __init__(self, db: 'Database') -> None:
        self.db = db
        self._finished = False
        db.begin_transaction()

    def __enter__(self) -> 'Transaction':
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        if self._finished:
            return
        if exc_type is not None:
            logger.warning(f'Aborting transaction scope after {exc_type.__name__}')
            self.abort()
        else:
            self.complete()

    def complete(self) -> None:
        """Mark this scope as successful."""
        if not self._finished:
            self._finished = True
            self.db.complete_transaction()

    def abort(self) -> None:
        """Abort this scope; the outermost scope will roll back."""
        if not self._finished:
            self._finished = True
            self.db.abort_transaction()
