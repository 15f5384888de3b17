from __future__ import annotations
from pydantic import BaseModel
from pydantic import Field
from typing import Literal
import datetime


# CUSTOM CLASSES
# Note: These are custom model classes for defining common features among
# Pydantic Base Schema.


class CustomModel(BaseModel):
	"""Base model class with common features."""
	pass


class CustomModelInsert(CustomModel):
	"""Base model for insert operations with common features."""
	pass


# ENUM TYPES
# Note: Literal types mirror the check constraints on text columns.


ChangeStatusEnum = Literal["NO_CHANGE", "TECH_CHANGE_ONLY", "CONTENT_CHANGED", "SCAN_FAILED"]
PageTypeEnum = Literal["static", "collection"]


# BASE CLASSES
# Note: These are the base Row models that include all fields.


class ProjectLinksBaseSchema(CustomModel):
	"""ProjectLinks Base Schema."""

	# Primary Keys
	id: str

	# Columns
	created_at: datetime.datetime | None = Field(default=None)
	page_type: PageTypeEnum
	project_id: str
	source: str
	title: str | None = Field(default=None)
	url: str


class ProjectsBaseSchema(CustomModel):
	"""Projects Base Schema."""

	# Primary Keys
	id: str

	# Columns
	created_at: datetime.datetime | None = Field(default=None)
	name: str | None = Field(default=None)
	sitemap_url: str | None = Field(default=None)


# INSERT CLASSES
# Note: These models are used for insert operations. Auto-generated fields
# (like IDs and timestamps) are optional.


class AuditLogsInsert(CustomModelInsert):
	"""AuditLogs Insert Schema."""

	# Primary Keys
	id: str | None = Field(default=None)  # has default value

	# Field properties:
	# change_status: nullable
	# change_summary: nullable
	# diff_patch: nullable
	# field_changes: nullable
	# html_source: nullable
	# schema_version: has default value
	# screenshot: nullable
	# screenshot_url: nullable
	# timestamp: has default value

	# Required fields
	content_hash: str
	full_hash: str
	link_id: str
	project_id: str
	url: str

		# Optional fields
	change_status: ChangeStatusEnum | None = Field(default=None)
	change_summary: str | None = Field(default=None)
	diff_patch: str | None = Field(default=None)
	field_changes: list[dict] | None = Field(default=None)
	html_source: str | None = Field(default=None)
	schema_version: int | None = Field(default=None)
	screenshot: str | None = Field(default=None)
	screenshot_url: str | None = Field(default=None)
	timestamp: datetime.datetime | None = Field(default=None)
