"""
Protocol objects to represent objects exposed by different pq implementations.
"""

# Copyright (C) 2023-2024 The pgfe Team

from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from typing import TYPE_CHECKING
from typing_extensions import Protocol

if TYPE_CHECKING:
    from .misc import ConninfoOption, Notify

# An object implementing the buffer protocol
Buffer = Union[bytes, bytearray, memoryview]

# The objects accepted as SQL strings and names
Text = Union[str, bytes]

NoticeCallback = Callable[..., Any]


class PGconn(Protocol):
    @property
    def pgconn_ptr(self) -> Optional[int]:
        ...

    def connect_poll(self) -> str:
        ...

    def finish(self) -> None:
        ...

    @property
    def db(self) -> str:
        ...

    @property
    def user(self) -> str:
        ...

    @property
    def host(self) -> str:
        ...

    @property
    def port(self) -> str:
        ...

    @property
    def status(self) -> str:
        ...

    @property
    def transaction_status(self) -> str:
        ...

    @property
    def pipeline_status(self) -> str:
        ...

    def parameter_status(self, name: Text) -> Optional[str]:
        ...

    @property
    def error_message(self) -> Optional[str]:
        ...

    @property
    def socket(self) -> int:
        ...

    @property
    def client_encoding(self) -> str:
        ...

    @property
    def conninfo(self) -> Dict[str, "ConninfoOption"]:
        ...

    def exec(self, command: Text) -> "PGresult":
        ...

    def exec_params(self, command: Text, *params: Any) -> "PGresult":
        ...

    def send_query(self, command: Text) -> None:
        ...

    def send_query_params(self, command: Text, *params: Any) -> None:
        ...

    def get_result(self) -> Optional["PGresult"]:
        ...

    def consume_input(self) -> None:
        ...

    def is_busy(self) -> bool:
        ...

    def flush(self) -> bool:
        ...

    def set_nonblocking(self, arg: bool) -> None:
        ...

    def is_nonblocking(self) -> bool:
        ...

    def notifies(self) -> Optional["Notify"]:
        ...

    def set_notice_receiver(
        self, fn: Optional[NoticeCallback], *args: Any
    ) -> None:
        ...

    def set_notice_processor(
        self, fn: Optional[NoticeCallback], *args: Any
    ) -> None:
        ...

    def put_copy_data(self, buffer: Buffer) -> bool:
        ...

    def put_copy_end(self, error: Optional[Text] = None) -> bool:
        ...

    def get_copy_data(self, async_: bool = False) -> Optional[bytes]:
        ...


class PGresult(Protocol):
    @property
    def status(self) -> str:
        ...

    @property
    def error_message(self) -> Optional[str]:
        ...

    def error_field(self, fieldcode: str) -> Optional[str]:
        ...

    @property
    def ntuples(self) -> int:
        ...

    @property
    def nfields(self) -> int:
        ...

    def fname(self, column_number: int) -> Optional[str]:
        ...

    def get_value(
        self, row_number: int, column_number: int
    ) -> Union[None, str, bytes]:
        ...

    def rows(self) -> List[List[Union[None, str, bytes]]]:
        ...

    @property
    def cmd_status(self) -> Optional[str]:
        ...

    def clear(self) -> None:
        ...


class PGcancel(Protocol):
    def free(self) -> bool:
        ...

    def cancel(self) -> None:
        ...


Params = Sequence[Any]
