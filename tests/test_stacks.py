import pytest

from nachtools.stacks import (
    ArrayStack,
    ListStack,
    Stack,
    StackEmptyError,
    StackFullError,
    main,
)


@pytest.fixture(params=["array", "list"])
def stack(request):
    return ArrayStack(10) if request.param == "array" else ListStack()


def test_stack_is_abstract():
    with pytest.raises(TypeError):
        Stack()


def test_push_pop_is_last_in_first_out(stack):
    for value in [1, 2, 3]:
        stack.push(value)
    assert [stack.pop(), stack.pop(), stack.pop()] == [3, 2, 1]
    assert stack.is_empty()


def test_new_stack_is_empty(stack):
    assert stack.is_empty()
    assert not stack.is_full()


def test_pop_from_empty_raises(stack):
    with pytest.raises(StackEmptyError):
        stack.pop()


def test_array_stack_fills_up():
    s = ArrayStack(2)
    s.push(5)
    assert not s.is_full()
    s.push(6)
    assert s.is_full()
    with pytest.raises(StackFullError):
        s.push(7)
    assert s.pop() == 6


@pytest.mark.parametrize("size", [0, -3])
def test_array_stack_rejects_small_size(size):
    with pytest.raises(ValueError):
        ArrayStack(size)


def test_list_stack_never_full():
    s = ListStack()
    for value in range(1000):
        s.push(value)
    assert not s.is_full()
    assert len(s) == 1000


def test_array_stack_self_test_fills_to_capacity():
    lines = ArrayStack(10).self_test()
    assert lines[0] == "pushing 17"
    assert lines[9] == "pushing 26"
    assert lines[10] == "popping 26"
    assert lines[-1] == "popping 17"
    assert len(lines) == 20


def test_self_test_pops_in_reverse_of_pushes(stack):
    lines = stack.self_test(10)
    pushed = [line.split()[1] for line in lines if line.startswith("pushing")]
    popped = [line.split()[1] for line in lines if line.startswith("popping")]
    assert popped == pushed[::-1]
    assert stack.is_empty()


def test_self_test_with_characters():
    lines = ArrayStack(3).self_test(start="a")
    assert lines == [
        "pushing a", "pushing b", "pushing c",
        "popping c", "popping b", "popping a",
    ]


def test_self_test_overflowing_array_stack_raises():
    with pytest.raises(StackFullError):
        ArrayStack(2).self_test(3)


def test_list_stack_self_test_needs_count():
    with pytest.raises(ValueError):
        ListStack().self_test()


def test_main_prints_every_run(capsys):
    assert main([]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "Testing ArrayStack"
    assert out[1] == "pushing 17"
    assert "Testing ListStack" in out
    assert "pushing a" in out
    assert out.count("popping 17") == 2


def test_main_count_option(capsys):
    assert main(["--count", "2"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[:5] == [
        "Testing ArrayStack", "pushing 17", "pushing 18", "popping 18", "popping 17",
    ]


def test_main_rejects_zero_count():
    with pytest.raises(SystemExit):
        main(["--count", "0"])