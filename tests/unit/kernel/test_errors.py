from __future__ import annotations

import pytest

from inbox_identity.identity.errors import (
    InvalidMergeError,
    MergeConflictError,
    MergeNotFoundError,
    MergeTimeoutError,
    MigrationFailureError,
)
from inbox_identity.kernel.errors import ConflictError, IdentityError, NotFoundError, ValidationError


@pytest.mark.unit
@pytest.mark.parametrize("code", ["Bad", "bad-code", "bad..code", ".bad", ""])
def test_error_code_must_be_dotted_lowercase(code: str):
    with pytest.raises(ValueError):
        IdentityError(code=code, message="x")


@pytest.mark.unit
def test_public_dict_omits_empty_meta_and_request_id():
    error = NotFoundError(message="Contact not found")

    assert error.to_public_dict(request_id=None) == {"detail": "Contact not found", "code": "resource.not_found"}


@pytest.mark.unit
@pytest.mark.parametrize(
    ("error", "status_code", "code", "rediscover"),
    [
        (InvalidMergeError(), 400, "merge.invalid", False),
        (MergeNotFoundError(), 404, "merge.not_found", True),
        (MergeConflictError(), 409, "merge.conflict", True),
        (MigrationFailureError(), 500, "merge.migration_failed", False),
        (MergeTimeoutError(), 504, "merge.timeout", False),
    ],
)
def test_merge_taxonomy(error, status_code, code, rediscover):
    assert error.status_code == status_code
    assert error.code == code
    assert error.meta["rediscover"] is rediscover


@pytest.mark.unit
def test_merge_not_found_and_conflict_are_generic_kinds_too():
    assert isinstance(MergeNotFoundError(), NotFoundError)
    assert isinstance(MergeConflictError(), ConflictError)
    assert ValidationError().status_code == 422
