"""Tests for the local credential files written by active sessions."""

from __future__ import annotations

import json
import os
import stat

from cloud_sessions.providers.aws_credentials_file import AwsCredentialsFile
from cloud_sessions.providers.azure_principal_file import SESSION_TAG, AzureServicePrincipalFile
from cloud_sessions.vault.aws_credentials import AWSCredentials

from conftest import make_aws_credentials


class TestAwsCredentialsFile:
    def test_foreign_sections_are_preserved(self, credentials_file: AwsCredentialsFile) -> None:
        credentials_file.path.parent.mkdir(parents=True)
        credentials_file.path.write_text("[personal]\naws_access_key_id = AKIAME\naws_secret_access_key = x\n")

        credentials_file.write_profile("default", make_aws_credentials(), "us-east-1")
        credentials_file.remove_profile("default")

        assert credentials_file.profiles() == ["personal"]
        assert credentials_file.read_profile("personal")["aws_access_key_id"] == "AKIAME"

    def test_rewrite_replaces_section(self, credentials_file: AwsCredentialsFile) -> None:
        credentials_file.write_profile("default", make_aws_credentials("1"), "us-east-1")
        credentials_file.write_profile("default", make_aws_credentials("2"))

        profile = credentials_file.read_profile("default")
        assert profile["aws_access_key_id"] == "ASIA2"
        assert "region" not in profile

    def test_secret_with_percent_sign(self, credentials_file: AwsCredentialsFile) -> None:
        creds = AWSCredentials(
            access_key_id="AKIA", secret_access_key="a%b%c", session_token=None, lease_id=None, ttl_seconds=1
        )
        credentials_file.write_profile("default", creds)
        assert credentials_file.read_profile("default")["aws_secret_access_key"] == "a%b%c"

    def test_remove_missing(self, credentials_file: AwsCredentialsFile) -> None:
        assert credentials_file.remove_profile("nope") is False

    def test_file_is_private(self, credentials_file: AwsCredentialsFile) -> None:
        credentials_file.write_profile("default", make_aws_credentials())
        assert stat.S_IMODE(os.stat(credentials_file.path).st_mode) == 0o600


class TestAzureServicePrincipalFile:
    def test_upsert_and_remove_for_session(self, principal_file: AzureServicePrincipalFile) -> None:
        principal_file.upsert("c1", "tenant", "s1", session_id="az-1")
        principal_file.upsert("c2", "tenant", "s2")

        assert principal_file.remove_for_session("az-1") == ["c1"]
        assert [e["client_id"] for e in principal_file.entries()] == ["c2"]
        assert principal_file.remove_for_session("az-1") == []

    def test_entry_shape(self, principal_file: AzureServicePrincipalFile) -> None:
        principal_file.upsert("c1", "tenant", "s1", session_id="az-1")
        data = json.loads(principal_file.path.read_text())
        assert data == [{"client_id": "c1", "tenant": "tenant", "client_secret": "s1", SESSION_TAG: "az-1"}]

    def test_upsert_replaces_same_client(self, principal_file: AzureServicePrincipalFile) -> None:
        principal_file.upsert("c1", "tenant", "old")
        principal_file.upsert("c1", "tenant", "new")
        assert [e["client_secret"] for e in principal_file.entries()] == ["new"]

    def test_remove_by_client_id(self, principal_file: AzureServicePrincipalFile) -> None:
        principal_file.upsert("c1", "tenant", "s1")
        assert principal_file.remove("c1") is True
        assert principal_file.remove("c1") is False

    def test_missing_file_has_no_entries(self, principal_file: AzureServicePrincipalFile) -> None:
        assert principal_file.entries() == []
