"""Resolution of CloudFormation template parameters."""

from typing import Any, Dict, List, Mapping, Optional, Union

from stack_deploy.utils.errors import ConfigurationError, ErrorContext

# A parameter whose description carries this marker does not force a deploy
# even though it is SSM-typed.
SSM_PARAMETER_NO_INVALIDATE = '[cdk:skip]'

ParameterChanges = Union[bool, str]


class TemplateParameters:
    """The ``Parameters`` section of a template."""

    def __init__(self, formal: Mapping[str, Dict[str, Any]]):
        self.formal = dict(formal)

    @classmethod
    def from_template(cls, template: Mapping[str, Any]) -> 'TemplateParameters':
        return cls(template.get('Parameters') or {})

    def supply_all(self, updates: Mapping[str, Optional[str]],
                   stack_name: Optional[str] = None) -> 'ParameterValues':
        """Resolve parameters from explicit values and template defaults only."""
        return ParameterValues(self.formal, updates, {}, stack_name)

    def update_existing(self, updates: Mapping[str, Optional[str]], previous: Mapping[str, str],
                        stack_name: Optional[str] = None) -> 'ParameterValues':
        """Resolve parameters, keeping previously deployed values where none is supplied."""
        return ParameterValues(self.formal, updates, previous, stack_name)


class ParameterValues:
    """Resolved parameters of one deployment.

    Attributes:
        values: Effective value of every formal parameter
        api_parameters: Parameter list for CreateChangeSet/CreateStack/UpdateStack
    """

    def __init__(
        self,
        formal: Mapping[str, Dict[str, Any]],
        updates: Mapping[str, Optional[str]],
        previous: Mapping[str, str],
        stack_name: Optional[str] = None
    ):
        """Resolve every formal parameter.

        Explicit values win, then previously deployed values (sent as
        ``UsePreviousValue``), then template defaults (left out of the call).

        Raises:
            ConfigurationError: If a formal parameter ends up without a value
        """
        self.formal = dict(formal)
        self.values: Dict[str, Any] = {}
        self.api_parameters: List[Dict[str, Any]] = []

        missing = []
        for key, spec in self.formal.items():
            if updates.get(key) is not None:
                self.values[key] = updates[key]
                self.api_parameters.append({'ParameterKey': key, 'ParameterValue': updates[key]})
            elif key in previous:
                self.values[key] = previous[key]
                self.api_parameters.append({'ParameterKey': key, 'UsePreviousValue': True})
            elif spec.get('Default') is not None:
                self.values[key] = spec['Default']
            else:
                missing.append(key)

        if missing:
            raise ConfigurationError(
                f"The following CloudFormation Parameters are missing a value: {', '.join(missing)}",
                context=ErrorContext(stack_name=stack_name, operation='resolve_parameters'),
                suggestions=['Pass them with --parameters Stack:Key=Value or in the config file']
            )

        # Unknown parameters are passed through so CloudFormation reports typos
        for key, value in updates.items():
            if key not in self.formal and value:
                self.api_parameters.append({'ParameterKey': key, 'ParameterValue': value})

    def has_changes(self, current: Mapping[str, str]) -> ParameterChanges:
        """Compare against the currently deployed values.

        Returns:
            'ssm' if an SSM-typed parameter makes the result unknowable,
            otherwise whether any value was added, removed or changed
        """
        for spec in self.formal.values():
            if str(spec.get('Type', '')).startswith('AWS::SSM::Parameter::') \
                    and SSM_PARAMETER_NO_INVALIDATE not in (spec.get('Description') or ''):
                return 'ssm'

        for key, value in current.items():
            if key not in self.values or str(self.values[key]) != str(value):
                return True

        return any(key not in current for key in self.values)
