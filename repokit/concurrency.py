"""Optimistic concurrency reconciliation.

For every mutation the reconciler decides which token the stored row must
still carry (the match token) and which token is written in its place
(the write token). Stores enforce the match as a precondition of the
physical write.
"""

from enum import Enum

import typing as t
from dataclasses import dataclass

from repokit.entity import ConcurrencyMode, EntityDescriptor, describe
from repokit.errors import ConcurrencyModelMismatchError
from repokit.tokens import TokenGenerator

if t.TYPE_CHECKING:
    from repokit.storage import RecordSchema


class Operation(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class TokenReconciliation:
    """Tokens prepared for one physical write.

    ``verify`` tells the store to compare the stored token with
    ``match_token``; ``write_token`` is ``None`` when no token is written.
    """

    mode: ConcurrencyMode
    operation: Operation
    match_token: str | None = None
    write_token: str | None = None
    verify: bool = False


def _blank(token: str | None) -> bool:
    return token is None or not token.strip()


class ConcurrencyReconciler:
    def __init__(self, token_generator: TokenGenerator) -> None:
        self.token_generator = token_generator

    def reconcile(
        self,
        entity: t.Any,
        operation: Operation,
        descriptor: EntityDescriptor | None = None,
    ) -> TokenReconciliation:
        descriptor = descriptor or describe(type(entity))
        mode = descriptor.concurrency_mode

        if mode is ConcurrencyMode.NONE:
            return TokenReconciliation(mode, operation)

        verify = operation is not Operation.CREATE

        if mode is ConcurrencyMode.EXPLICIT:
            expected = entity.expected_change_token
            write_token = None
            if operation is not Operation.DELETE:
                requested = entity.change_token
                if _blank(requested) or requested == expected:
                    write_token = self.token_generator.generate()
                else:
                    write_token = requested
            return TokenReconciliation(mode, operation, expected, write_token, verify)

        write_token = None
        if operation is not Operation.DELETE:
            write_token = self.token_generator.generate()
        return TokenReconciliation(mode, operation, entity.change_token, write_token, verify)


def validate_concurrency_model(descriptor: EntityDescriptor, schema: "RecordSchema") -> None:
    """Reject entity/record pairs that disagree about having a change token."""
    if descriptor.has_change_token and schema.concurrency_token is None:
        msg = (
            f"Entity '{descriptor.name}' uses {descriptor.concurrency_mode.value} change tokens "
            f"but record '{schema.record_type.__qualname__}' has no concurrency token column."
        )
        raise ConcurrencyModelMismatchError(msg, entity_type=descriptor.name)
    if not descriptor.has_change_token and schema.concurrency_token is not None:
        msg = (
            f"Record '{schema.record_type.__qualname__}' has concurrency token column "
            f"'{schema.concurrency_token}' but entity '{descriptor.name}' does not use change tokens."
        )
        raise ConcurrencyModelMismatchError(msg, entity_type=descriptor.name)
