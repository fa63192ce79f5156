"""Connection Registry: authenticated identity -> live connection handle.

One entry per identity, last-connect-wins. Registering an identity that
already has an entry replaces the handle without closing the previous
connection; that connection keeps receiving broadcasts until it disconnects
on its own. The registry is not consulted for broadcast, only for direct
addressing.

Mutated only from the relay's event-loop turns, so it carries no lock.
"""
import logging
from typing import Any, Dict, Iterator, Optional, Union

from chatflow.auth.schemas import Identity

logger = logging.getLogger(__name__)


def _key(identity: Union[Identity, str]) -> str:
    return identity.id if isinstance(identity, Identity) else identity


class ConnectionRegistry:
    """Mapping from identity ID to the most recent connection handle."""

    def __init__(self) -> None:
        self._entries: Dict[str, Any] = {}

    def register(self, identity: Identity, handle: Any) -> Optional[Any]:
        """Upsert the entry for ``identity``.

        Returns:
            The handle that was replaced, if any.
        """
        previous = self._entries.get(identity.id)
        self._entries[identity.id] = handle
        if previous is not None and previous is not handle:
            logger.info("User %s reconnected; replacing previous connection", identity.username)
        return previous

    def unregister(self, identity: Identity, handle: Optional[Any] = None) -> bool:
        """Remove the entry for ``identity``.

        When ``handle`` is given the entry is removed only if it still points
        at that handle, so an older connection closing late cannot evict the
        newer one.

        Returns:
            True if an entry was removed.
        """
        current = self._entries.get(identity.id)
        if current is None:
            return False
        if handle is not None and current is not handle:
            return False
        del self._entries[identity.id]
        return True

    def lookup(self, identity: Union[Identity, str]) -> Optional[Any]:
        return self._entries.get(_key(identity))

    def __contains__(self, identity: object) -> bool:
        if not isinstance(identity, (Identity, str)):
            return False
        return _key(identity) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))
