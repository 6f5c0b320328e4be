from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Annotated, Literal, Optional, Union


VERSION_HEADER = "TAP Version 14\n"

YAML_OPEN = "  ---\n"
YAML_CLOSE = "  ...\n"


class DirectiveKind(Enum):
    TODO = "todo"
    SKIP = "skip"


class Record(BaseModel):
    """Base for every parsed TAP line. Records are immutable once built."""

    model_config = ConfigDict(frozen=True)

    def to_line(self) -> str:
        raise NotImplementedError


class TestDirective(BaseModel):
    __test__ = False

    model_config = ConfigDict(frozen=True)

    kind: DirectiveKind
    reason: Optional[str] = None

    def to_text(self) -> str:
        if self.reason:
            return f"{self.kind.name} {self.reason}"
        return self.kind.name


class TestPoint(Record):
    __test__ = False

    kind: Literal["test_point"] = "test_point"
    status: bool
    test_number: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    directive: Optional[TestDirective] = None
    yaml: Optional[str] = None

    @property
    def todo(self) -> bool:
        return self.directive is not None and self.directive.kind == DirectiveKind.TODO

    @property
    def skip(self) -> bool:
        return self.directive is not None and self.directive.kind == DirectiveKind.SKIP

    def to_line(self) -> str:
        line = "ok" if self.status else "not ok"
        if self.test_number is not None:
            line += f" {self.test_number}"
        if self.description:
            line += f" - {self.description}"
        if self.directive is not None:
            line += f" # {self.directive.to_text()}"
        line += "\n"
        if self.yaml is not None:
            line += YAML_OPEN + self.yaml + YAML_CLOSE
        return line


class TestPlan(Record):
    __test__ = False

    kind: Literal["plan"] = "plan"
    count: int = Field(..., ge=0)
    reason: Optional[str] = None

    def to_line(self) -> str:
        if self.reason:
            return f"1..{self.count} # {self.reason}\n"
        return f"1..{self.count}\n"


class BailOut(Record):
    kind: Literal["bail_out"] = "bail_out"
    reason: Optional[str] = None

    def to_line(self) -> str:
        if self.reason:
            return f"Bail out! {self.reason}\n"
        return "Bail out!\n"


class Pragma(Record):
    kind: Literal["pragma"] = "pragma"
    name: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9_-]+$")
    enabled: bool

    def to_line(self) -> str:
        sign = "+" if self.enabled else "-"
        return f"pragma {sign}{self.name}\n"


class Comment(Record):
    kind: Literal["comment"] = "comment"
    text: Optional[str] = None

    def to_line(self) -> str:
        if self.text:
            return f"# {self.text}\n"
        return "#\n"


class Empty(Record):
    kind: Literal["empty"] = "empty"

    def to_line(self) -> str:
        return "\n"


class Anything(Record):
    """A line that matched no other rule. Kept so the stream can advance."""

    kind: Literal["anything"] = "anything"
    text: str = Field(..., min_length=1)

    def to_line(self) -> str:
        return self.text + "\n"


TestDetails = Annotated[
    Union[TestPoint, TestPlan, BailOut, Pragma, Comment, Empty, Anything],
    Field(discriminator="kind"),
]
