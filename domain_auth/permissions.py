"""
Permission registry for directory-mapped local groups.

Groups listed in a domain's group map are owned by the directory: their
members are set by reconciliation, so nobody may grant or revoke them by
hand. Seeding registers those groups and withdraws the manual group-editing
right from every group that had it.
"""

import copy
import logging
import threading
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

USER_RIGHTS = "userrights"


class RoleRegistry:
    """
    Process-wide table of group permissions.

    Attributes:
        group_permissions: group -> {right: bool}
        add_groups: group -> groups its members may add users to
        remove_groups: group -> groups its members may remove users from
    """

    def __init__(
        self,
        group_permissions: Optional[Dict[str, Dict[str, bool]]] = None,
        add_groups: Optional[Dict[str, List[str]]] = None,
        remove_groups: Optional[Dict[str, List[str]]] = None,
        baseline_group: str = "user",
    ):
        self.group_permissions = group_permissions if group_permissions is not None else {}
        self.add_groups = add_groups if add_groups is not None else {}
        self.remove_groups = remove_groups if remove_groups is not None else {}
        self.baseline_group = baseline_group
        self._lock = threading.Lock()
        self._seeded: Optional[frozenset] = None

    @property
    def seeded(self) -> bool:
        return self._seeded is not None

    def seed_mapped_groups(self, group_names: Iterable[str]) -> bool:
        """
        Register mapped groups and restrict manual editing of them.

        Runs once per registry. A repeat call with the same groups is a no-op;
        a call with a different set is refused.

        Args:
            group_names: Local groups that appear in any domain's group map

        Returns:
            True if the registry was modified
        """
        mapped = frozenset(group_names)

        with self._lock:
            if self._seeded is not None:
                if mapped != self._seeded:
                    logger.warning(
                        f"Permission registry already seeded with {len(self._seeded)} mapped group(s); "
                        f"ignoring a different set of {len(mapped)}"
                    )
                return False

            baseline = self.group_permissions.get(self.baseline_group, {})
            for group in sorted(mapped):
                if group not in self.group_permissions:
                    self.group_permissions[group] = copy.deepcopy(baseline)
                    logger.debug(f"Seeded mapped group '{group}' with '{self.baseline_group}' permissions")

            manual_groups = [g for g in self.group_permissions if g not in mapped]

            for group, rights in self.group_permissions.items():
                if not rights.get(USER_RIGHTS):
                    continue

                rights[USER_RIGHTS] = False
                self.add_groups.setdefault(group, list(manual_groups))
                self.remove_groups.setdefault(group, list(manual_groups))
                logger.info(f"Restricted manual group editing for '{group}' to {len(manual_groups)} unmapped group(s)")

            self._seeded = mapped
            return True

    def can_manage(self, editor_group: str, target_group: str) -> bool:
        """Whether members of editor_group may add users to target_group."""
        rights = self.group_permissions.get(editor_group, {})
        if rights.get(USER_RIGHTS):
            return True
        return target_group in self.add_groups.get(editor_group, [])
