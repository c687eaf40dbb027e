import pytest

from slaballoc.errors import FUNCTION_LIMIT, MESSAGE_LIMIT, AllocatorError, ErrorCode


def test_codes_are_numbered_in_declaration_order():
    names = [
        "NO_ERROR",
        "INVALID_ORDER",
        "NULL_POINTER",
        "MEMORY_ALLOCATION_FAILED",
        "BUDDY_SYSTEM_OVERFLOW",
        "UNKNOWN_ERROR",
    ]
    for number, name in enumerate(names):
        err = AllocatorError(number, "msg", "fn")
        assert err.code.name == name
        assert str(err).endswith(f"(Error code: {number})")


def test_str_matches_report_format():
    err = AllocatorError(ErrorCode.INVALID_ORDER, "Invalid order detected", "test_invalid_order")
    assert str(err) == (
        "Error occurred in function 'test_invalid_order': "
        "Invalid order detected (Error code: 1)"
    )


@pytest.mark.parametrize(
    "code, message, function",
    [
        (ErrorCode.INVALID_ORDER, "Invalid order detected", "test_invalid_order"),
        (ErrorCode.NULL_POINTER, "Null pointer encountered", "test_null_pointer"),
        (
            ErrorCode.MEMORY_ALLOCATION_FAILED,
            "Memory allocation failed",
            "test_memory_allocation_failed",
        ),
        (ErrorCode.BUDDY_SYSTEM_OVERFLOW, "Buddy system overflow", "test_buddy_system_overflow"),
    ],
)
def test_fields_and_rendering(code, message, function):
    err = AllocatorError(code, message, function)
    assert err.code is code
    assert err.message == message
    assert err.function == function
    text = str(err)
    assert text.startswith(f"Error occurred in function '{function}': {message}")
    assert text.endswith(f"(Error code: {int(code)})")


def test_integer_code_is_converted():
    err = AllocatorError(2, "Null pointer encountered", "f")
    assert err.code is ErrorCode.NULL_POINTER


def test_unknown_integer_code_rejected():
    with pytest.raises(ValueError):
        AllocatorError(99, "bad", "f")


def test_long_message_and_function_are_clipped():
    message = "m" * (MESSAGE_LIMIT + 20)
    function = "f" * (FUNCTION_LIMIT + 20)
    err = AllocatorError(ErrorCode.UNKNOWN_ERROR, message, function)
    assert err.message == message[:MESSAGE_LIMIT]
    assert err.function == function[:FUNCTION_LIMIT]
    assert len(err.message) == 49


def test_can_be_raised_and_caught_as_exception():
    err = AllocatorError(ErrorCode.BUDDY_SYSTEM_OVERFLOW, "Buddy system overflow", "g")
    with pytest.raises(AllocatorError) as info:
        raise err
    assert info.value is err
    assert str(info.value) == (
        "Error occurred in function 'g': Buddy system overflow (Error code: 4)"
    )