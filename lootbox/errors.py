from __future__ import annotations

from typing import List, Optional


class LootboxError(Exception):
    """Base class for every error raised by the lootbox client."""


class MalformedRecord(LootboxError, ValueError):
    pass


class AccountNotFound(LootboxError):
    def __init__(self, address: object = None) -> None:
        self.address = address
        detail = f" at {address}" if address is not None else ""
        super().__init__(f"account has no data{detail}")


class UnsupportedVersion(LootboxError):
    def __init__(self, version: int, kind: str = "state") -> None:
        self.version = version
        super().__init__(f"unsupported {kind} version {version}")


class PriceNotConfigured(LootboxError):
    def __init__(self, payment_ata: object) -> None:
        self.payment_ata = payment_ata
        super().__init__(f"no price configured for payment account {payment_ata}")


class InvalidSignatureFormat(LootboxError, ValueError):
    pass


class TransactionSizeExceeded(LootboxError):
    def __init__(self, size: float, limit: int, lookup_table: object = None) -> None:
        self.size = size
        self.limit = limit
        self.lookup_table = lookup_table
        msg = f"transaction is {size} bytes, limit is {limit}"
        if lookup_table is not None:
            msg += f" (lookup table {lookup_table} is still allocated)"
        super().__init__(msg)


class MissingSigner(LootboxError, ValueError):
    def __init__(self, keys: List[object]) -> None:
        self.keys = list(keys)
        super().__init__(f"no keypair supplied for required signer(s) {', '.join(str(k) for k in self.keys)}")


class TransactionFailed(LootboxError):
    def __init__(self, message: str, signature: object = None, logs: Optional[List[str]] = None) -> None:
        self.signature = signature
        self.logs = list(logs or [])
        super().__init__(message)


class LookupTableLeaked(TransactionFailed):
    """Raised when lookup table provisioning stopped half way.

    The table keeps its rent until an operator closes it with ``close-alt``.
    """

    def __init__(self, lookup_table: object, cause: TransactionFailed) -> None:
        self.lookup_table = lookup_table
        super().__init__(
            f"lookup table {lookup_table} left allocated: {cause}",
            signature=cause.signature,
            logs=cause.logs,
        )


class SecretsError(LootboxError):
    pass


class ProfileError(LootboxError, ValueError):
    pass
