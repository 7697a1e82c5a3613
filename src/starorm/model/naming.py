"""Default table, key and pivot names derived from model class names."""

from typing import Type, TYPE_CHECKING

from fastcore.basics import camel2snake

if TYPE_CHECKING:
    from .model import Model


def pluralize(word: str) -> str:
    "Naive English plural: `category` -> `categories`, `box` -> `boxes`, `post` -> `posts`"
    if word.endswith("y") and len(word) > 1 and word[-2] not in "aeiou":
        return word[:-1] + "ies"
    if word.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    return word + "s"


def table_name(model_cls: Type["Model"]) -> str:
    "`OrderItem` -> `order_items`"
    return pluralize(camel2snake(model_cls.__name__))


def foreign_key(model_cls: Type["Model"]) -> str:
    "`OrderItem` -> `order_item_id` (with the model's primary key name)"
    return f"{camel2snake(model_cls.__name__)}_{model_cls._primary_key}"


def pivot_table(first: Type["Model"], second: Type["Model"]) -> str:
    "`Post`, `Tag` -> `post_tag`, in alphabetical order"
    return "_".join(sorted([camel2snake(first.__name__), camel2snake(second.__name__)]))
