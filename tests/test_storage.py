from __future__ import annotations

import dataclasses
import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

import bloodwork.storage as storage
from bloodwork.config import settings
from bloodwork.storage import (
    S3Uploader,
    StorageError,
    build_key,
    list_lab_files,
    read_lab,
    resolve_output_file_name,
    write_lab,
)

LAB = {"date": "2024-03-04", "labName": "Quest", "importLocation": "/in/a.pdf", "measurements": [{"name": "TSH", "value": 2.1}]}


class TestLocalFiles:
    def test_write_and_read(self, tmp_path):
        path, payload = write_lab(LAB, "bloodwork_2024-03-04_quest.json", tmp_path / "data")
        assert payload.startswith('{\n    "date": "2024-03-04"')
        assert payload.endswith("\n")
        assert read_lab(path) == LAB
        assert list_lab_files(tmp_path / "data") == [path]

    def test_list_ignores_other_files(self, tmp_path):
        (tmp_path / "bloodwork-glossary.json").write_text("{}", encoding="utf-8")
        assert list_lab_files(tmp_path) == []
        assert list_lab_files(tmp_path / "missing") == []

    def test_unreadable_record(self, tmp_path):
        path = tmp_path / "bloodwork_2024-03-04_x.json"
        path.write_text("nope", encoding="utf-8")
        with pytest.raises(StorageError):
            read_lab(path)


class TestResolveOutputFileName:
    def test_fresh_name(self, tmp_path):
        assert resolve_output_file_name(LAB, "/in/a.pdf", tmp_path) == "bloodwork_2024-03-04_quest.json"

    def test_same_source_overwrites(self, tmp_path):
        write_lab(LAB, "bloodwork_2024-03-04_quest.json", tmp_path)
        assert resolve_output_file_name(LAB, "/in/a.pdf", tmp_path) == "bloodwork_2024-03-04_quest.json"

    def test_other_source_gets_suffix(self, tmp_path):
        write_lab(LAB, "bloodwork_2024-03-04_quest.json", tmp_path)
        name = resolve_output_file_name(LAB, "/in/Quest Follow-up.pdf", tmp_path)
        assert name == "bloodwork_2024-03-04_quest_quest-follow-up.json"


class TestS3Uploader:
    def test_build_key(self):
        assert build_key("a.json", "/vitals/") == "vitals/a.json"
        assert build_key("a.json", "") == "a.json"

    def test_missing_region(self, monkeypatch):
        monkeypatch.setattr(storage, "settings", dataclasses.replace(settings, aws_region=None))
        with pytest.raises(StorageError, match="AWS_REGION"):
            S3Uploader()

    def test_upload(self, monkeypatch):
        client = MagicMock()
        monkeypatch.setattr("boto3.client", MagicMock(return_value=client))
        uploader = S3Uploader(bucket="bucket", prefix="vitals", region="eu-central-1")

        key = uploader.upload("a.json", json.dumps(LAB))

        assert key == "vitals/a.json"
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "bucket"
        assert kwargs["Key"] == "vitals/a.json"
        assert kwargs["ContentType"] == "application/json; charset=utf-8"

    def test_upload_failure(self, monkeypatch):
        client = MagicMock()
        client.put_object.side_effect = ClientError({"Error": {"Code": "403", "Message": "denied"}}, "PutObject")
        monkeypatch.setattr("boto3.client", MagicMock(return_value=client))
        uploader = S3Uploader(bucket="bucket", prefix="vitals", region="eu-central-1")
        with pytest.raises(StorageError, match="vitals/a.json"):
            uploader.upload("a.json", "{}")
