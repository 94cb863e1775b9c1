"""Tests for template parsing and identity helpers."""

import pytest

from stack_deploy.utils.digest import (
    change_set_name,
    client_token,
    content_hash,
    parse_template_body,
    template_body,
    templates_equal,
    validate_sns_topic_arn,
)
from stack_deploy.utils.errors import ConfigurationError


class TestTemplates:
    """Test template parsing and comparison."""

    def test_yaml_short_form_intrinsics(self):
        body = (
            'Resources:\n'
            '  Bucket:\n'
            '    Type: AWS::S3::Bucket\n'
            '    Properties:\n'
            '      BucketName: !Sub "${AWS::StackName}-data"\n'
            '      Tags:\n'
            '        - Key: Arn\n'
            '          Value: !GetAtt Queue.Arn\n'
            '        - Key: Zone\n'
            '          Value: !Select [0, !GetAZs ""]\n'
            '        - Key: Ref\n'
            '          Value: !Ref Env\n'
        )

        template = parse_template_body(body)

        properties = template['Resources']['Bucket']['Properties']
        assert properties['BucketName'] == {'Fn::Sub': '${AWS::StackName}-data'}
        values = [tag['Value'] for tag in properties['Tags']]
        assert values == [
            {'Fn::GetAtt': ['Queue', 'Arn']},
            {'Fn::Select': [0, {'Fn::GetAZs': ''}]},
            {'Ref': 'Env'},
        ]

    def test_json_body(self):
        assert parse_template_body('{"Resources": {}}') == {'Resources': {}}

    def test_empty_body(self):
        assert parse_template_body(None) == {}

    def test_equal_templates_ignore_formatting(self):
        deployed = '{"Resources": {"B": {"Type": "AWS::S3::Bucket"}}, "Outputs": {}}'
        desired = {'Outputs': {}, 'Resources': {'B': {'Type': 'AWS::S3::Bucket'}}}

        assert templates_equal(deployed, desired)
        assert templates_equal('Resources:\n  B:\n    Type: AWS::S3::Bucket\n', {'Resources': {'B': {'Type': 'AWS::S3::Bucket'}}})

    def test_different_templates(self):
        assert not templates_equal({'Resources': {}}, {'Resources': {'B': {'Type': 'AWS::S3::Bucket'}}})

    def test_template_body_passes_strings_through(self):
        assert template_body('Resources: {}') == 'Resources: {}'
        assert parse_template_body(template_body({'Resources': {}})) == {'Resources': {}}


class TestIdentity:
    """Test tokens, names and hashes."""

    def test_client_tokens_are_unique(self):
        first, second = client_token('exec'), client_token('exec')

        assert first.startswith('exec')
        assert first != second

    def test_generated_change_set_names_are_unique(self):
        first, second = change_set_name(None), change_set_name(None)

        assert first.startswith('stack-deploy-change-set-')
        assert len(first) == len('stack-deploy-change-set-') + 12
        assert first != second

    def test_supplied_change_set_name_is_kept(self):
        assert change_set_name('review') == 'review'

    def test_content_hash_is_order_insensitive_for_mappings(self):
        assert content_hash({'a': 1, 'b': 2}) == content_hash({'b': 2, 'a': 1})
        assert content_hash('a', 'b') != content_hash('ab')


class TestSnsArns:
    """Test notification ARN validation."""

    @pytest.mark.parametrize('arn', [
        'arn:aws:sns:us-east-1:123456789012:alerts',
        'arn:aws-cn:sns:cn-north-1:123456789012:alerts',
        'arn:aws:sns:eu-west-1:123456789012:events.fifo',
    ])
    def test_valid(self, arn):
        assert validate_sns_topic_arn(arn) == arn

    @pytest.mark.parametrize('arn', [
        'not-an-arn',
        'arn:aws:sqs:us-east-1:123456789012:queue',
        'arn:aws:sns:us-east-1:1234:alerts',
    ])
    def test_invalid(self, arn):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_sns_topic_arn(arn)

        assert str(exc_info.value) == f"Notification arn {arn} is not a valid arn for an SNS topic"
