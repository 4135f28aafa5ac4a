from hookbridge.bitrix.client import BitrixClient
from hookbridge.bitrix.dispatch import HANDLERS, dispatch
from hookbridge.bitrix.errors import WebhookError
from hookbridge.bitrix.mapping import FieldMappingRule, apply_field_mapping, parse_field_mapping
from hookbridge.bitrix.schemas import ConnectionCategory, DispatchTarget, OperationResult

__all__ = [
    "BitrixClient",
    "HANDLERS",
    "dispatch",
    "WebhookError",
    "FieldMappingRule",
    "apply_field_mapping",
    "parse_field_mapping",
    "ConnectionCategory",
    "DispatchTarget",
    "OperationResult",
]
