from enum import StrEnum


class Method(StrEnum):
    GET = "GET"
    POST = "POST"
