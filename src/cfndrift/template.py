"""Partial evaluation of CloudFormation templates.

Only as much of the template is evaluated as is needed to know which NACL
entries and routes a stack declares: conditions, parameter and logical ID
references, and the string intrinsics commonly used to build CIDRs and IDs.
Anything that needs a deployed attribute (Fn::GetAtt and friends) resolves
to UNRESOLVED instead of raising.
"""

import json
import logging
import re
from collections.abc import Iterator
from typing import Any

import yaml

from cfndrift.errors import TemplateParseError
from cfndrift.models import IcmpTypeCode, NaclEntry, PortRange, Route, TransitGatewayRoute
from cfndrift.rules import NACL, ROUTE, TGW_ROUTE, RuleKind

logger = logging.getLogger(__name__)


class _Sentinel:
    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name


UNRESOLVED = _Sentinel("UNRESOLVED")
NO_VALUE = _Sentinel("NO_VALUE")

_SUB_VARIABLE = re.compile(r"\$\{([^}]+)\}")
_UNRESOLVABLE_FUNCTIONS = frozenset(
    {"Fn::GetAtt", "Fn::GetAZs", "Fn::Cidr", "Fn::Base64", "Fn::Transform", "Fn::Length"}
)
_PORT_PROTOCOLS = frozenset({"6", "17"})
_ICMP_PROTOCOLS = frozenset({"1", "58"})


class _TemplateLoader(yaml.SafeLoader):
    pass


def _construct_intrinsic(loader, tag_suffix, node):
    """Turn short-form tags such as !Ref or !If into their long-form dicts."""
    name = tag_suffix if tag_suffix in ("Ref", "Condition") else f"Fn::{tag_suffix}"
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
        if name == "Fn::GetAtt":
            value = value.split(".", 1)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return {name: value}


_TemplateLoader.add_multi_constructor("!", _construct_intrinsic)


def parse_template(body: str | dict) -> dict:
    """Parse a template body given as JSON, YAML or an already decoded dict."""
    if isinstance(body, dict):
        template = body
    elif not isinstance(body, str) or not body.strip():
        raise TemplateParseError("Template body is empty")
    else:
        try:
            if body.lstrip().startswith("{"):
                template = json.loads(body)
            else:
                template = yaml.load(body, Loader=_TemplateLoader)  # noqa: S506
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise TemplateParseError(f"Unable to parse template: {exc}") from exc

    if not isinstance(template, dict):
        raise TemplateParseError("Template must be a mapping")
    if not isinstance(template.get("Resources") or {}, dict):
        raise TemplateParseError("Template Resources must be a mapping")
    return template


def _is_list_parameter(declaration: Any) -> bool:
    if not isinstance(declaration, dict):
        return False
    param_type = str(declaration.get("Type", ""))
    return param_type == "CommaDelimitedList" or "List<" in param_type


def _scalar_to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _pair(function: str, args: Any, str_first: bool = True) -> tuple[Any, Any]:
    if not isinstance(args, list) or len(args) != 2:
        raise TemplateParseError(f"{function} needs a list of two arguments")
    if str_first and not isinstance(args[0], str):
        raise TemplateParseError(f"{function} needs a string delimiter")
    return args[0], args[1]


class TemplateResolver:
    """Resolves intrinsics in a parsed template against deployed values."""

    def __init__(
        self,
        template: str | dict,
        parameters: dict[str, str] | None = None,
        logical_to_physical: dict[str, str] | None = None,
        pseudo_parameters: dict[str, str] | None = None,
        exports: dict[str, str] | None = None,
    ):
        self._template = parse_template(template)
        self._resources = self._template.get("Resources") or {}
        self._conditions = self._template.get("Conditions") or {}
        self._mappings = self._template.get("Mappings") or {}
        self._declared_parameters = self._template.get("Parameters") or {}
        self._parameters = parameters or {}
        self._logical_to_physical = logical_to_physical or {}
        self._pseudo = pseudo_parameters or {}
        self._exports = exports or {}
        self._condition_cache: dict[str, bool] = {}
        self._evaluating: set[str] = set()

    # -- parameters and conditions -----------------------------------------

    def parameter(self, name: str) -> Any:
        """Return the deployed value of a parameter, falling back to its default."""
        declaration = self._declared_parameters.get(name)
        if name in self._parameters:
            value: Any = self._parameters[name]
        elif isinstance(declaration, dict) and "Default" in declaration:
            value = declaration["Default"]
        else:
            return UNRESOLVED
        if _is_list_parameter(declaration) and isinstance(value, str):
            return [v.strip() for v in value.split(",")] if value else []
        return value

    def condition(self, name: str) -> bool:
        if name in self._condition_cache:
            return self._condition_cache[name]
        if name not in self._conditions:
            raise TemplateParseError(f"Unknown condition {name!r}")
        if name in self._evaluating:
            raise TemplateParseError(f"Circular condition {name!r}")
        self._evaluating.add(name)
        try:
            result = self._evaluate(self._conditions[name])
        finally:
            self._evaluating.discard(name)
        self._condition_cache[name] = result
        return result

    def _evaluate(self, expression: Any) -> bool:
        if isinstance(expression, bool):
            return expression
        if isinstance(expression, str):
            return expression.lower() == "true"
        if not isinstance(expression, dict) or len(expression) != 1:
            raise TemplateParseError(f"Invalid condition expression: {expression!r}")

        (function, args), = expression.items()
        if function == "Condition":
            return self.condition(args)
        if function == "Fn::Equals":
            if not isinstance(args, list) or len(args) != 2:
                raise TemplateParseError("Fn::Equals needs exactly two values")
            left, right = self.resolve(args[0]), self.resolve(args[1])
            if left is UNRESOLVED or right is UNRESOLVED:
                logger.debug("Fn::Equals on unresolvable value %r, treating as false", args)
                return False
            return _scalar_to_string(left) == _scalar_to_string(right)
        if function == "Fn::Not":
            if not isinstance(args, list) or len(args) != 1:
                raise TemplateParseError("Fn::Not needs exactly one condition")
            return not self._evaluate(args[0])
        if function == "Fn::And":
            return all(self._evaluate(a) for a in args)
        if function == "Fn::Or":
            return any(self._evaluate(a) for a in args)
        raise TemplateParseError(f"Unsupported condition function {function}")

    # -- intrinsic resolution -----------------------------------------------

    def resolve(self, value: Any) -> Any:
        """Resolve intrinsics in value; returns UNRESOLVED or NO_VALUE where applicable."""
        if isinstance(value, list):
            items = [self.resolve(v) for v in value]
            return [v for v in items if v is not NO_VALUE]
        if not isinstance(value, dict):
            return value
        if len(value) == 1:
            (function, args), = value.items()
            if function == "Ref":
                return self._ref(args)
            if function.startswith("Fn::"):
                return self._function(function, args)
        resolved = {}
        for key, item in value.items():
            item = self.resolve(item)
            if item is not NO_VALUE:
                resolved[key] = item
        return resolved

    def _ref(self, name: Any) -> Any:
        if not isinstance(name, str):
            raise TemplateParseError(f"Ref needs a name, got {name!r}")
        if name == "AWS::NoValue":
            return NO_VALUE
        if name in self._pseudo:
            return self._pseudo[name]
        if name in self._logical_to_physical:
            return self._logical_to_physical[name]
        return self.parameter(name)

    def _function(self, function: str, args: Any) -> Any:
        if function in _UNRESOLVABLE_FUNCTIONS:
            return UNRESOLVED
        if function == "Fn::If":
            if not isinstance(args, list) or len(args) != 3:
                raise TemplateParseError("Fn::If needs a condition and two values")
            return self.resolve(args[1] if self.condition(args[0]) else args[2])
        if function == "Fn::Join":
            delimiter, items = _pair(function, args)
            items = self.resolve(items)
            if not isinstance(items, list) or any(i is UNRESOLVED for i in items):
                return UNRESOLVED
            return delimiter.join(_scalar_to_string(i) for i in items)
        if function == "Fn::Select":
            index, items = _pair(function, args, str_first=False)
            index, items = self.resolve(index), self.resolve(items)
            if index is UNRESOLVED or not isinstance(items, list):
                return UNRESOLVED
            try:
                return items[int(index)]
            except (IndexError, ValueError):
                return UNRESOLVED
        if function == "Fn::Split":
            delimiter, source = _pair(function, args)
            source = self.resolve(source)
            if not isinstance(source, str):
                return UNRESOLVED
            return source.split(delimiter)
        if function == "Fn::Sub":
            return self._sub(args)
        if function == "Fn::FindInMap":
            return self._find_in_map(args)
        if function == "Fn::ImportValue":
            name = self.resolve(args)
            if not isinstance(name, str):
                return UNRESOLVED
            return self._exports.get(name, UNRESOLVED)
        logger.debug("Unsupported intrinsic %s left unresolved", function)
        return UNRESOLVED

    def _sub(self, args: Any) -> Any:
        if isinstance(args, list):
            text, variables = args[0], args[1] if len(args) > 1 else {}
        else:
            text, variables = args, {}
        if not isinstance(text, str):
            raise TemplateParseError("Fn::Sub needs a string")

        unresolved = False

        def replace(match: re.Match) -> str:
            nonlocal unresolved
            name = match.group(1)
            if name.startswith("!"):
                return "${" + name[1:] + "}"
            if name in variables:
                value = self.resolve(variables[name])
            elif "." in name:
                value = UNRESOLVED
            else:
                value = self._ref(name)
            if value is UNRESOLVED or value is NO_VALUE or isinstance(value, (list, dict)):
                unresolved = True
                return ""
            return _scalar_to_string(value)

        result = _SUB_VARIABLE.sub(replace, text)
        return UNRESOLVED if unresolved else result

    def _find_in_map(self, args: Any) -> Any:
        if not isinstance(args, list) or len(args) < 3:
            raise TemplateParseError("Fn::FindInMap needs a map name and two keys")
        names = [self.resolve(a) for a in args[:3]]
        if any(n is UNRESOLVED for n in names):
            return UNRESOLVED
        current: Any = self._mappings
        for name in names:
            if not isinstance(current, dict) or str(name) not in current:
                return UNRESOLVED
            current = current[str(name)]
        return self.resolve(current)

    # -- resources -----------------------------------------------------------

    def resources(self, resource_type: str) -> Iterator[tuple[str, dict]]:
        """Yield (logical ID, properties) for active resources of a type."""
        for logical_id, resource in self._resources.items():
            if not isinstance(resource, dict) or resource.get("Type") != resource_type:
                continue
            condition = resource.get("Condition")
            if condition and not self.condition(condition):
                logger.debug("Skipping %s: condition %s is false", logical_id, condition)
                continue
            properties = resource.get("Properties") or {}
            if not isinstance(properties, dict):
                raise TemplateParseError(f"Properties of {logical_id} must be a mapping")
            yield logical_id, properties

    def _references(self, value: Any, logical_id: str) -> bool:
        """Check whether a parent property value points at logical_id."""
        if isinstance(value, dict) and len(value) == 1:
            (function, args), = value.items()
            if function == "Ref":
                return args == logical_id
            if function == "Fn::If" and isinstance(args, list) and len(args) == 3:
                return self._references(args[1] if self.condition(args[0]) else args[2], logical_id)
        resolved = self.resolve(value)
        if not isinstance(resolved, str):
            return False
        return resolved == logical_id or resolved == self._logical_to_physical.get(logical_id)

    def _string(self, properties: dict, name: str) -> str | None:
        if name not in properties:
            return None
        value = self.resolve(properties[name])
        if value is UNRESOLVED:
            logger.debug("Property %s could not be resolved", name)
            return None
        if value is NO_VALUE or value is None or isinstance(value, (list, dict)):
            return None
        return _scalar_to_string(value)

    def _integer(self, properties: dict, name: str, default: int | None = None) -> int | None:
        value = self._string(properties, name)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            return None

    def _boolean(self, properties: dict, name: str) -> bool | None:
        if name not in properties:
            return False
        value = self._string(properties, name)
        if value is None:
            return None
        return value.lower() == "true"

    def _rules(self, kind: RuleKind, logical_id: str, convert) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for rule_id, properties in self.resources(kind.rule_type):
            if not self._references(properties.get(kind.parent_property), logical_id):
                continue
            rule = convert(properties)
            key = kind.key(rule)
            if not key:
                logger.debug("Skipping %s %s: identity could not be resolved", kind.rule_type, rule_id)
                continue
            result[key] = rule
        return result

    def nacl_entries(self, logical_id: str) -> dict[str, NaclEntry]:
        """Return the NACL entries declared for a NetworkAcl, keyed by direction and number."""
        return self._rules(NACL, logical_id, self._nacl_entry)

    def routes(self, logical_id: str) -> dict[str, Route]:
        """Return the routes declared for a RouteTable, keyed by destination."""
        return self._rules(ROUTE, logical_id, self._route)

    def transit_gateway_routes(self, logical_id: str) -> dict[str, TransitGatewayRoute]:
        """Return the routes declared for a TransitGatewayRouteTable, keyed by destination."""
        return self._rules(TGW_ROUTE, logical_id, self._tgw_route)

    def rules_for(self, kind: RuleKind, logical_id: str) -> dict[str, Any]:
        extractors = {
            NACL.name: self.nacl_entries,
            ROUTE.name: self.routes,
            TGW_ROUTE.name: self.transit_gateway_routes,
        }
        return extractors[kind.name](logical_id)

    def _nacl_entry(self, properties: dict) -> NaclEntry:
        rule_number = self._integer(properties, "RuleNumber")
        egress = self._boolean(properties, "Egress")
        if egress is None:
            rule_number, egress = None, False
        protocol = self._string(properties, "Protocol") or ""
        cidr_block = self._string(properties, "CidrBlock")
        ipv6_cidr_block = None if cidr_block else self._string(properties, "Ipv6CidrBlock")

        port_range = None
        ports = self.resolve(properties.get("PortRange"))
        if protocol in _PORT_PROTOCOLS and isinstance(ports, dict):
            from_port = self._integer(ports, "From")
            to_port = self._integer(ports, "To")
            if from_port is not None and to_port is not None:
                port_range = PortRange(from_port, to_port)

        icmp = None
        icmp_props = self.resolve(properties.get("Icmp"))
        if protocol in _ICMP_PROTOCOLS and isinstance(icmp_props, dict):
            icmp = IcmpTypeCode(
                type=self._integer(icmp_props, "Type", -1),
                code=self._integer(icmp_props, "Code", -1),
            )

        return NaclEntry(
            rule_number=rule_number,
            egress=egress,
            protocol=protocol,
            rule_action=(self._string(properties, "RuleAction") or "").lower(),
            cidr_block=cidr_block,
            ipv6_cidr_block=ipv6_cidr_block,
            port_range=port_range,
            icmp_type_code=icmp,
        )

    def _route(self, properties: dict) -> Route:
        return Route(
            destination_cidr_block=self._string(properties, "DestinationCidrBlock"),
            destination_ipv6_cidr_block=self._string(properties, "DestinationIpv6CidrBlock"),
            destination_prefix_list_id=self._string(properties, "DestinationPrefixListId"),
            carrier_gateway_id=self._string(properties, "CarrierGatewayId"),
            core_network_arn=self._string(properties, "CoreNetworkArn"),
            egress_only_internet_gateway_id=self._string(properties, "EgressOnlyInternetGatewayId"),
            gateway_id=self._string(properties, "GatewayId"),
            instance_id=self._string(properties, "InstanceId"),
            local_gateway_id=self._string(properties, "LocalGatewayId"),
            nat_gateway_id=self._string(properties, "NatGatewayId"),
            network_interface_id=self._string(properties, "NetworkInterfaceId"),
            transit_gateway_id=self._string(properties, "TransitGatewayId"),
            vpc_peering_connection_id=self._string(properties, "VpcPeeringConnectionId"),
        )

    def _tgw_route(self, properties: dict) -> TransitGatewayRoute:
        destination = self._string(properties, "DestinationCidrBlock")
        prefix_list = self._string(properties, "DestinationPrefixListId")
        if self._boolean(properties, "Blackhole"):
            return TransitGatewayRoute(destination, prefix_list, (), "static", "blackhole")
        attachment = self._string(properties, "TransitGatewayAttachmentId")
        return TransitGatewayRoute(
            destination, prefix_list, (attachment,) if attachment else (), "static", "active"
        )


def resolve_rules(
    template: str | dict,
    parameters: dict[str, str],
    logical_id: str,
    kind: RuleKind,
    logical_to_physical: dict[str, str] | None = None,
    **kwargs,
) -> dict[str, Any]:
    """Return the rules a template declares for one NACL, route table or TGW route table."""
    resolver = TemplateResolver(template, parameters, logical_to_physical, **kwargs)
    return resolver.rules_for(kind, logical_id)
