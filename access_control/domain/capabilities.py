"""Static role to capability table."""

from __future__ import annotations

from enum import Enum

from .account import Account, Role


class Capability(str, Enum):
    read_public_data = "read_public_data"
    read_operator_data = "read_operator_data"
    read_lab_data = "read_lab_data"
    read_epd_data = "read_epd_data"
    read_epa_data = "read_epa_data"
    write_operator_data = "write_operator_data"
    write_lab_data = "write_lab_data"
    write_epd_data = "write_epd_data"
    write_epa_data = "write_epa_data"
    export_data = "export_data"
    import_data = "import_data"
    view_analytics = "view_analytics"
    manage_users = "manage_users"
    manage_system = "manage_system"


C = Capability

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.public: frozenset({C.read_public_data}),
    Role.operator: frozenset(
        {C.read_public_data, C.read_operator_data, C.write_operator_data, C.export_data, C.view_analytics}
    ),
    Role.laboratory: frozenset(
        {C.read_public_data, C.read_lab_data, C.write_lab_data, C.export_data, C.view_analytics}
    ),
    Role.epd_staff: frozenset(
        {
            C.read_public_data,
            C.read_operator_data,
            C.read_lab_data,
            C.read_epd_data,
            C.write_epd_data,
            C.export_data,
            C.import_data,
            C.view_analytics,
        }
    ),
    Role.epa_staff: frozenset(
        {
            C.read_public_data,
            C.read_operator_data,
            C.read_lab_data,
            C.read_epd_data,
            C.read_epa_data,
            C.write_epa_data,
            C.export_data,
            C.view_analytics,
        }
    ),
    Role.admin: frozenset(Capability),
}


def capabilities(account: Account | None) -> frozenset[Capability]:
    """Return the capability set for ``account``.

    Anonymous callers (``None``) always receive the public role's set. An
    authenticated account receives its role's set only once approved.
    """
    if account is None:
        return ROLE_CAPABILITIES[Role.public]
    if not account.is_approved:
        return frozenset()
    return ROLE_CAPABILITIES[account.role]


def has_capability(account: Account | None, capability: Capability) -> bool:
    return capability in capabilities(account)
