import io

from proccie.mux import ANSI_COLORS, MAX_LINE_BUFFER, RESET, Mux


def test_prefix_writer_basic():
    buf = io.StringIO()
    mux = Mux(buf, 6, True)
    w = mux.prefix_writer("web", None)
    assert w.write(b"hello\nworld\n") == 12
    lines = buf.getvalue().rstrip("\n").split("\n")
    assert len(lines) == 2
    assert "hello" in lines[0]
    assert "world" in lines[1]
    assert "web" in lines[0]
    assert lines[0] == f"{ANSI_COLORS[0]}web   {RESET} | hello"


def test_prefix_writer_partial_lines():
    buf = io.StringIO()
    mux = Mux(buf, 4, True)
    w = mux.prefix_writer("app", None)
    w.write(b"hel")
    w.write(b"lo\n")
    lines = buf.getvalue().rstrip("\n").split("\n")
    assert len(lines) == 1
    assert "hello" in lines[0]


def test_prefix_writer_flush():
    buf = io.StringIO()
    mux = Mux(buf, 4, True)
    w = mux.prefix_writer("app", None)
    w.write(b"no newline")
    assert buf.getvalue() == ""
    w.flush()
    assert "no newline" in buf.getvalue()


def test_system_log():
    buf = io.StringIO()
    mux = Mux(buf, 6, True)
    mux.system_log("hello world")
    output = buf.getvalue()
    assert "system" in output
    assert "hello world" in output


def test_system_log_multiline():
    buf = io.StringIO()
    mux = Mux(buf, 6, True)
    mux.system_log("one\ntwo\n")
    lines = buf.getvalue().rstrip("\n").split("\n")
    assert len(lines) == 2
    assert all("system" in line for line in lines)


def test_system_log_suppressed_without_debug():
    buf = io.StringIO()
    mux = Mux(buf, 6, False)
    mux.system_log("should not appear")
    assert buf.getvalue() == ""


def test_multiple_writers_different_colors():
    buf = io.StringIO()
    mux = Mux(buf, 4, True)
    w1 = mux.prefix_writer("aaa", None)
    w2 = mux.prefix_writer("bbb", None)
    w1.write(b"from a\n")
    w2.write(b"from b\n")
    output = buf.getvalue()
    assert "from a" in output
    assert "from b" in output
    line_a, line_b = output.rstrip("\n").split("\n")
    assert line_a.startswith(ANSI_COLORS[0])
    assert line_b.startswith(ANSI_COLORS[1])


def test_colors_cycle():
    buf = io.StringIO()
    mux = Mux(buf, 4, True)
    for i in range(len(ANSI_COLORS)):
        mux.prefix_writer(f"p{i}", None)
    w = mux.prefix_writer("again", None)
    w.write(b"x\n")
    assert buf.getvalue().startswith(ANSI_COLORS[0])


def test_prefix_writer_buffer_cap():
    buf = io.StringIO()
    mux = Mux(buf, 4, True)
    w = mux.prefix_writer("app", None)
    w.write(b"x" * (MAX_LINE_BUFFER + 100))
    output = buf.getvalue()
    assert output != ""
    assert output.count("x") == MAX_LINE_BUFFER + 100


def test_log_file():
    console, log_file = io.StringIO(), io.StringIO()
    mux = Mux(console, 6, True)
    w = mux.prefix_writer("web", log_file)
    w.write(b"hello\n")
    console_out = console.getvalue()
    assert "\033[" in console_out
    assert "hello" in console_out
    log_out = log_file.getvalue()
    assert "\033[" not in log_out
    assert log_out == "web    | hello\n"


def test_log_file_flush():
    console, log_file = io.StringIO(), io.StringIO()
    mux = Mux(console, 4, True)
    w = mux.prefix_writer("app", log_file)
    w.write(b"partial")
    assert log_file.getvalue() == ""
    w.flush()
    log_out = log_file.getvalue()
    assert "partial" in log_out
    assert "\033[" not in log_out


def test_log_file_buffer_cap():
    console, log_file = io.StringIO(), io.StringIO()
    mux = Mux(console, 4, True)
    w = mux.prefix_writer("app", log_file)
    w.write(b"x" * (MAX_LINE_BUFFER + 100))
    log_out = log_file.getvalue()
    assert log_out != ""
    assert "\033[" not in log_out


def test_log_file_none_flush():
    buf = io.StringIO()
    mux = Mux(buf, 4, True)
    w = mux.prefix_writer("app", None)
    w.write(b"hello\n")
    w.flush()
    assert "hello" in buf.getvalue()


def test_log_file_per_process():
    console, log_a, log_b = io.StringIO(), io.StringIO(), io.StringIO()
    mux = Mux(console, 4, True)
    wa = mux.prefix_writer("aaa", log_a)
    wb = mux.prefix_writer("bbb", log_b)
    wa.write(b"from a\n")
    wb.write(b"from b\n")
    assert "from a" in log_a.getvalue()
    assert "from b" not in log_a.getvalue()
    assert "from b" in log_b.getvalue()
    assert "from a" not in log_b.getvalue()
    assert "from a" in console.getvalue()
    assert "from b" in console.getvalue()


def test_write_accepts_text():
    buf = io.StringIO()
    mux = Mux(buf, 4, True)
    w = mux.prefix_writer("app", None)
    assert w.write("caf\u00e9\n") == len("caf\u00e9\n".encode("utf-8"))
    assert "caf\u00e9" in buf.getvalue()