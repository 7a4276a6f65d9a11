from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake-case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class AckResponse(CamelModel):

    success: bool = True
    message: str


class UnreadCountResponse(CamelModel):

    unread_count: int


class Page(CamelModel):

    total_pages: int
    current_page: int
    total: int


def page_meta(total: int, page: int, page_size: int) -> dict:
    total_pages = (total + page_size - 1) // page_size if page_size else 0
    return {"total_pages": total_pages, "current_page": page, "total": total}
