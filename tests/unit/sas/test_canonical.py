"""
Unit tests for string-to-sign construction.

Expected strings are written out field by field so a layout change shows up
as a readable diff.
"""

import pytest
from datetime import datetime, timezone

from sasforge.auth.delegation import DelegationKey
from sasforge.exceptions import InvalidScopeError
from sasforge.sas.canonical import (
    DEFAULT_VERSION,
    account_string_to_sign,
    blob_string_to_sign,
    canonicalized_blob_resource,
    check_version,
)
from sasforge.sas.permissions import (
    AccountSasResourceType,
    AccountSasService,
    SasProtocol,
)
from sasforge.sas.scope import AccountSasScope, BlobSasScope

START = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
EXPIRY = datetime(2026, 1, 1, 5, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def blob_scope():
    return BlobSasScope(
        container_name="demo",
        blob_name="myfile.txt",
        permissions="r",
        start=START,
        expiry=EXPIRY,
    )


@pytest.fixture
def delegation_key():
    return DelegationKey(
        signed_start=START,
        signed_expiry=datetime(2026, 1, 2, tzinfo=timezone.utc),
        signed_service="b",
        signed_version="2021-08-06",
        value=b"0" * 32,
        signed_oid="oid-1",
        signed_tid="tid-1",
    )


class TestVersion:
    """Test signed version validation."""

    def test_default_version_supported(self):
        assert check_version(DEFAULT_VERSION) == "2021-08-06"

    def test_too_old(self):
        with pytest.raises(InvalidScopeError) as exc_info:
            check_version("2015-04-05")

        assert exc_info.value.field == "version"

    @pytest.mark.parametrize("version", ["", "latest", "2021-8-6"])
    def test_malformed(self, version):
        with pytest.raises(InvalidScopeError):
            check_version(version)


class TestBlobStringToSign:
    """Test resource-scope string-to-sign layouts."""

    def test_canonicalized_resource(self):
        assert canonicalized_blob_resource("acct", "demo", "myfile.txt") == "/blob/acct/demo/myfile.txt"
        assert canonicalized_blob_resource("acct", "demo", None) == "/blob/acct/demo"

    def test_shared_key_layout(self, blob_scope):
        expected = "\n".join([
            "r",
            "2026-01-01T00:00:00Z",
            "2026-01-01T05:00:00Z",
            "/blob/acct/demo/myfile.txt",
            "",  # si
            "",  # sip
            "https",
            "2021-08-06",
            "b",
            "",  # snapshot
            "",  # encryption scope
            "", "", "", "", "",
        ])

        assert blob_string_to_sign(blob_scope, "acct") == expected

    def test_no_trailing_newline(self, blob_scope):
        """Fields are newline-joined, not newline-terminated."""
        result = blob_string_to_sign(blob_scope, "acct")

        assert result.count("\n") == 15
        assert result.endswith("b" + "\n" * 7)

    def test_older_version_has_no_encryption_scope(self, blob_scope):
        result = blob_string_to_sign(blob_scope, "acct", version="2019-12-12")

        assert result.count("\n") == 14
        assert result.endswith("2019-12-12\nb" + "\n" * 6)

    def test_container_scope(self):
        scope = BlobSasScope(
            container_name="demo", permissions="rl", start=START, expiry=EXPIRY
        )
        fields = blob_string_to_sign(scope, "acct").split("\n")

        assert fields[0] == "rl"
        assert fields[3] == "/blob/acct/demo"
        assert fields[8] == "c"

    def test_missing_start_is_empty_field(self):
        scope = BlobSasScope(container_name="demo", blob_name="f", permissions="r", expiry=EXPIRY)
        fields = blob_string_to_sign(scope, "acct").split("\n")

        assert fields[1] == ""

    def test_ip_and_protocol(self):
        scope = BlobSasScope(
            container_name="demo",
            blob_name="f",
            permissions="r",
            start=START,
            expiry=EXPIRY,
            protocol=SasProtocol.HTTPS_AND_HTTP,
            ip_range="10.0.0.1-10.0.0.9",
        )
        fields = blob_string_to_sign(scope, "acct").split("\n")

        assert fields[5] == "10.0.0.1-10.0.0.9"
        assert fields[6] == "https,http"

    def test_delegation_layout(self, blob_scope, delegation_key):
        expected = "\n".join([
            "r",
            "2026-01-01T00:00:00Z",
            "2026-01-01T05:00:00Z",
            "/blob/acct/demo/myfile.txt",
            "oid-1",
            "tid-1",
            "2026-01-01T00:00:00Z",
            "2026-01-02T00:00:00Z",
            "b",
            "2021-08-06",
            "", "", "",  # saoid, suoid, scid
            "",  # sip
            "https",
            "2021-08-06",
            "b",
            "",  # snapshot
            "",  # encryption scope
            "", "", "", "", "",
        ])

        assert blob_string_to_sign(blob_scope, "acct", delegation_key=delegation_key) == expected

    def test_delegation_layout_before_audit_fields(self, blob_scope, delegation_key):
        fields = blob_string_to_sign(
            blob_scope, "acct", version="2019-12-12", delegation_key=delegation_key
        ).split("\n")

        assert fields[9] == "2021-08-06"
        assert fields[10] == ""  # sip
        assert fields[11] == "https"
        assert len(fields) == 20

    def test_unsupported_version(self, blob_scope):
        with pytest.raises(InvalidScopeError):
            blob_string_to_sign(blob_scope, "acct", version="2017-07-29")


class TestAccountStringToSign:
    """Test account-scope string-to-sign layouts."""

    def test_layout(self):
        scope = AccountSasScope(
            services=[AccountSasService.BLOB],
            resource_types=list(AccountSasResourceType),
            permissions="rl",
            expiry=datetime(2026, 1, 1, 10, tzinfo=timezone.utc),
        )

        expected = (
            "acct\n"
            "rl\n"
            "b\n"
            "sco\n"
            "\n"  # st
            "2026-01-01T10:00:00Z\n"
            "\n"  # sip
            "https\n"
            "2021-08-06\n"
            "\n"  # encryption scope
        )
        assert account_string_to_sign(scope, "acct") == expected

    def test_older_version(self):
        scope = AccountSasScope(
            services="bt",
            resource_types="sco",
            permissions="rl",
            start=START,
            expiry=EXPIRY,
        )

        result = account_string_to_sign(scope, "acct", version="2019-12-12")

        assert result == "acct\nrl\nbt\nsco\n2026-01-01T00:00:00Z\n2026-01-01T05:00:00Z\n\nhttps\n2019-12-12\n"

    def test_letters_follow_alphabet_order(self):
        scope = AccountSasScope(
            services="tb",
            resource_types="ocs",
            permissions="lr",
            expiry=EXPIRY,
        )

        fields = account_string_to_sign(scope, "acct").split("\n")

        assert fields[1:4] == ["rl", "bt", "sco"]
