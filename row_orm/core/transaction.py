"""Transaction management.

A TransactionManager demarcates a unit of work on one pooled connection.
While it is active, every statement the Engine issues on the same thread
is routed through that connection. Entering a transaction while another
is already active on the thread joins the outer one.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from row_orm.core.exceptions import TransactionStateError

if TYPE_CHECKING:
    from row_orm.core.engine import Engine

logger = logging.getLogger(__name__)


class _TxState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class TransactionManager:
    """Synchronous transaction context manager.

    Commits on a clean exit, rolls back when the block raises. Explicit
    ``commit()`` / ``rollback()`` end the transaction early; statements
    issued afterwards run outside of it.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._connection: Any = None
        self._joined = False
        self._state = _TxState.IDLE

    @property
    def state(self) -> str:
        return self._state.value

    @property
    def connection(self) -> Any:
        return self._connection

    def __enter__(self) -> TransactionManager:
        outer = self._engine.current_transaction()
        if outer is not None:
            # Nested block: statements go through the outer connection and
            # the outer block decides the outcome.
            self._joined = True
            self._connection = outer.connection
            self._state = _TxState.ACTIVE
            return self
        self._connection = self._engine.connection_manager.acquire()
        self._state = _TxState.ACTIVE
        self._engine._push_transaction(self)
        logger.debug("Transaction started")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if self._joined:
            self._state = _TxState.IDLE
            return
        try:
            if self._state == _TxState.ACTIVE:
                if exc_type is not None:
                    self._connection.rollback()
                    self._state = _TxState.ROLLED_BACK
                    logger.debug("Transaction rolled back after %s", exc_type.__name__)
                else:
                    self._connection.commit()
                    self._state = _TxState.COMMITTED
                    logger.debug("Transaction committed")
        finally:
            self._finish()

    def commit(self) -> None:
        """Explicitly commit the transaction."""
        self._check_owner("commit")
        self._connection.commit()
        self._state = _TxState.COMMITTED
        self._finish()

    def rollback(self) -> None:
        """Explicitly rollback the transaction."""
        if self._state == _TxState.COMMITTED:
            raise TransactionStateError("committed", "rollback")
        self._check_owner("rollback")
        self._connection.rollback()
        self._state = _TxState.ROLLED_BACK
        self._finish()

    def _check_owner(self, action: str) -> None:
        if self._state != _TxState.ACTIVE:
            raise TransactionStateError(self._state.value, action)
        if self._joined:
            raise TransactionStateError("nested", action)

    def _finish(self) -> None:
        if self._connection is None:
            return
        self._engine._pop_transaction(self)
        self._engine.connection_manager.release(self._connection)
        self._connection = None
