GROUP_SUFFIX = "@g.us"
USER_SUFFIX = "@s.whatsapp.net"


def is_group_jid(jid: str) -> bool:
    return GROUP_SUFFIX in jid


def address_from_jid(jid: str) -> str:
    """Strip the gateway domain (and any device suffix) from a JID."""
    local_part = jid.strip().split("@", 1)[0]
    return local_part.split(":", 1)[0]


def jid_from_address(address: str) -> str:
    address = address.strip()
    if "@" in address:
        return address
    return f"{address}{USER_SUFFIX}"


def normalize_address(raw: str) -> str:
    if "@" in raw:
        return address_from_jid(raw)
    return "".join(char for char in raw if char.isdigit())
