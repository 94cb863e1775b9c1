"""Tests for building and publishing file assets."""

import sys
import zipfile
from unittest.mock import Mock

import boto3
import pytest
from moto import mock_aws

from stack_deploy.assets.handler import S3FileAssetHandler
from stack_deploy.assets.manifest import AssetManifest, FileAsset, FileAssetDestination, FileAssetSource
from stack_deploy.config.models import FileAssetConfig
from stack_deploy.utils.errors import AssetError

BUCKET = 'assets-bucket'


@pytest.fixture
def aws_credentials(monkeypatch):
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def s3(aws_credentials):
    with mock_aws():
        client = boto3.client('s3', region_name='us-east-1')
        client.create_bucket(Bucket=BUCKET)
        yield client


@pytest.fixture
def handler(s3, tmp_path):
    client_manager = Mock()
    client_manager.get_client.return_value = s3
    return S3FileAssetHandler(client_manager, staging_dir=str(tmp_path / 'staging'))


@pytest.fixture
def source_dir(tmp_path):
    source = tmp_path / 'lambda'
    source.mkdir()
    (source / 'app.py').write_text('def handler(event, context):\n    return event\n')
    (source / '__pycache__').mkdir()
    (source / '__pycache__' / 'app.cpython-311.pyc').write_bytes(b'\0')
    return source


def file_asset(path, packaging='file', key='asset.bin', build_command=None):
    return FileAsset(
        id='asset',
        source=FileAssetSource(path=str(path), packaging=packaging, build_command=build_command),
        destination=FileAssetDestination(bucket_name=BUCKET, object_key=key, region='us-east-1')
    )


class TestS3FileAssetHandler:
    """Test staging and uploading."""

    def test_zip_directory(self, handler, source_dir):
        asset = file_asset(source_dir, packaging='zip', key='bundle.zip')

        handler.build(asset)

        staged = handler.staged_path(asset)
        with zipfile.ZipFile(staged) as archive:
            assert archive.namelist() == ['app.py']

    def test_publish_uploads_staged_file(self, handler, s3, tmp_path):
        source = tmp_path / 'config.json'
        source.write_text('{"a": 1}')
        asset = file_asset(source, key='config.json')

        assert not handler.is_published(asset)
        handler.build(asset)
        handler.publish(asset)

        assert handler.is_published(asset)
        body = s3.get_object(Bucket=BUCKET, Key='config.json')['Body'].read()
        assert body == b'{"a": 1}'

    def test_publish_before_build_fails(self, handler, tmp_path):
        with pytest.raises(AssetError) as exc_info:
            handler.publish(file_asset(tmp_path / 'missing.json'))

        assert 'has not been built' in str(exc_info.value)

    def test_missing_source_fails(self, handler, tmp_path):
        with pytest.raises(AssetError) as exc_info:
            handler.build(file_asset(tmp_path / 'missing.json'))

        assert 'does not exist' in str(exc_info.value)

    def test_file_packaging_requires_a_file(self, handler, source_dir):
        with pytest.raises(AssetError):
            handler.build(file_asset(source_dir))

    def test_failing_build_command(self, handler, source_dir):
        asset = file_asset(
            source_dir,
            packaging='zip',
            build_command=(sys.executable, '-c', 'import sys; sys.stderr.write("boom"); sys.exit(3)')
        )

        with pytest.raises(AssetError) as exc_info:
            handler.build(asset)

        assert 'exited with 3: boom' in str(exc_info.value)

    def test_build_command_runs_in_source_directory(self, handler, source_dir):
        asset = file_asset(
            source_dir,
            packaging='zip',
            build_command=(sys.executable, '-c', 'open("generated.txt", "w").write("x")')
        )

        handler.build(asset)

        with zipfile.ZipFile(handler.staged_path(asset)) as archive:
            assert sorted(archive.namelist()) == ['app.py', 'generated.txt']


class TestAssetManifest:
    """Test manifests and node ids."""

    def test_from_config_resolves_paths_and_region(self, tmp_path):
        config = FileAssetConfig(
            id='bundle', path='lambda', packaging='zip', bucket_name=BUCKET, object_key='bundle.zip'
        )

        manifest = AssetManifest.from_config('api', [config], tmp_path, 'eu-west-1')

        asset = manifest.assets[0]
        assert asset.source.path == str(tmp_path / 'lambda')
        assert asset.destination.region == 'eu-west-1'

    def test_node_ids_follow_source_and_destination(self, tmp_path):
        one = file_asset(tmp_path, key='one.zip')
        two = file_asset(tmp_path, key='two.zip')

        assert one.build_id == two.build_id
        assert one.publish_id != two.publish_id
