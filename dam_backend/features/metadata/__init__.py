"""Metadata schema and value storage."""

from .fields import FieldDefinition, FieldType
from .schema_service import MetadataSchemaService
from .store import AssetMetadataStore

__all__ = ["FieldDefinition", "FieldType", "MetadataSchemaService", "AssetMetadataStore"]
