"""Identity and digest helpers shared by the deploy engine."""

import hashlib
import json
import re
import uuid
from typing import Any, Optional

import yaml

from stack_deploy.utils.errors import ConfigurationError

DEFAULT_CHANGE_SET_PREFIX = 'stack-deploy-change-set'

SNS_TOPIC_ARN_PATTERN = re.compile(r'^arn:aws[a-z0-9-]*:sns:[a-z0-9-]+:\d{12}:[A-Za-z0-9_-]{1,256}(\.fifo)?$')


def canonical_json(value: Any) -> str:
    """Serialize a value with sorted keys and no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(',', ':'), default=str)


def content_hash(*parts: Any) -> str:
    """SHA-256 over the canonical form of ``parts``.

    Args:
        *parts: JSON-serializable values

    Returns:
        Hex digest
    """
    digest = hashlib.sha256()
    for part in parts:
        digest.update(canonical_json(part).encode('utf-8'))
        digest.update(b'\0')
    return digest.hexdigest()


def parse_template_body(body: Any) -> Any:
    """Turn a template body into a document.

    ``GetTemplate`` returns JSON templates as an already-decoded mapping and
    YAML templates as a string. Local templates may be either.
    """
    if body is None:
        return {}
    if isinstance(body, (dict, list)):
        return body
    try:
        return json.loads(body)
    except ValueError:
        return yaml.load(body, Loader=_CloudFormationLoader)


def templates_equal(current: Any, desired: Any) -> bool:
    """Compare two templates after canonicalization."""
    return canonical_json(parse_template_body(current)) == canonical_json(parse_template_body(desired))


def template_body(template: Any) -> str:
    """Serialize a template document for the ``TemplateBody`` argument."""
    if isinstance(template, str):
        return template
    return json.dumps(template, indent=1)


def client_token(prefix: str) -> str:
    """Unique request token such as ``create<uuid>`` or ``exec<uuid>``."""
    return f"{prefix}{uuid.uuid4()}"


def change_set_name(supplied: Optional[str]) -> str:
    """The supplied name, or a fresh ``stack-deploy-change-set-<suffix>``."""
    return supplied or f"{DEFAULT_CHANGE_SET_PREFIX}-{uuid.uuid4().hex[:12]}"


def validate_sns_topic_arn(arn: str) -> str:
    """Check that ``arn`` names an SNS topic.

    Raises:
        ConfigurationError: If it does not
    """
    if not SNS_TOPIC_ARN_PATTERN.match(arn):
        raise ConfigurationError(
            f"Notification arn {arn} is not a valid arn for an SNS topic",
            suggestions=['Use an ARN of the form arn:aws:sns:<region>:<account>:<topic>']
        )
    return arn


class _CloudFormationLoader(yaml.SafeLoader):
    """SafeLoader that keeps CloudFormation short-form intrinsics as data."""


def _construct_intrinsic(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Any:
    name = tag_suffix if tag_suffix in ('Ref', 'Condition') else f"Fn::{tag_suffix}"
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
        if name == 'Fn::GetAtt':
            value = value.split('.', 1)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return {name: value}


_CloudFormationLoader.add_multi_constructor('!', _construct_intrinsic)
