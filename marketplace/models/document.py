from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from marketplace.utils.validators import extract_video_url, parse_string_list


class _DocumentFields(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    link: str | None = None
    image: str | None = None
    video_url: str | None = Field(default=None, alias="videoUrl")
    input_image: str | None = Field(default=None, alias="inputImage")
    keywords: list[str] | None = None
    tags: list[str] | None = None
    category: str | None = None
    additional_html: str | None = Field(default=None, alias="additionalHTML")
    json_prompt: str | None = Field(default=None, alias="jsonPrompt")
    is_featured: bool | None = Field(default=None, alias="isFeatured")
    is_public: bool | None = Field(default=None, alias="isPublic")

    @model_validator(mode="before")
    @classmethod
    def _accept_keyword_alias(cls, data):
        # Older clients send the singular "keyword"
        if isinstance(data, dict) and "keywords" not in data and "keyword" in data:
            data = {**data, "keywords": data["keyword"]}
        return data

    @field_validator("keywords", "tags", mode="before")
    @classmethod
    def _split_list(cls, value):
        if value is None:
            return None
        return parse_string_list(value)

    def to_document(self) -> dict:
        """Only the fields the client actually sent, in document naming."""
        return self.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)


class DocumentCreate(_DocumentFields):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    created_by: str | None = Field(default=None, alias="createdBy")

    @field_validator("title", "description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    def to_document(self) -> dict:
        doc = super().to_document()
        if not doc.get("videoUrl"):
            video = extract_video_url(self.additional_html)
            if video:
                doc["videoUrl"] = video
        return doc


class DocumentUpdate(_DocumentFields):
    title: str | None = None
    description: str | None = None

    def to_document(self) -> dict:
        doc = super().to_document()
        if "additionalHTML" in doc and not doc.get("videoUrl"):
            video = extract_video_url(self.additional_html)
            if video:
                doc["videoUrl"] = video
        return doc


class LikeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(min_length=1, alias="userId")
