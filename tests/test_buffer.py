import threading

import pytest

from mpsbypass.buffer import DataBuffer


def test_initial_state():
    buf = DataBuffer(4)
    assert buf.size() == 4
    assert buf.is_write_ready() is True
    assert buf.is_read_ready() is False
    assert len(buf.write_buffer()) == 4
    assert len(buf.read_buffer()) == 4
    assert buf.write_buffer() is not buf.read_buffer()


def test_negative_size_rejected():
    with pytest.raises(ValueError):
        DataBuffer(-1)


def test_first_write_rotates_immediately():
    buf = DataBuffer(3)
    written = buf.write_buffer()
    written[:] = [7, 8, 9]
    buf.done_writing()
    assert buf.read_buffer() is written
    assert buf.read_buffer() == [7, 8, 9]
    assert buf.is_read_ready() is True
    assert buf.is_write_ready() is True


def test_no_rotation_until_both_done():
    buf = DataBuffer(2)
    buf.done_writing()
    first_write = buf.write_buffer()
    buf.done_writing()
    assert buf.is_write_ready() is False
    assert buf.write_buffer() is first_write
    buf.done_reading()
    assert buf.read_buffer() is first_write
    assert buf.is_write_ready() is True
    assert buf.is_read_ready() is True


def test_buffers_alternate():
    buf = DataBuffer(1)
    a = buf.write_buffer()
    b = buf.read_buffer()
    buf.done_writing()
    assert buf.write_buffer() is b
    buf.done_writing()
    buf.done_reading()
    assert buf.write_buffer() is a


def test_report_counts_operations():
    buf = DataBuffer(5)
    buf.done_writing()
    buf.done_writing()
    buf.done_reading()
    text = buf.report()
    assert "DataBuffer report:" in text
    assert "Number of write operations: 2" in text
    assert "Number of read operations:  1" in text
    assert "Buffer[0] size:             5" in text
    assert "Buffer[1] size:             5" in text
    assert text.count("==========================================") == 2


def test_wait_times_out_when_not_ready():
    buf = DataBuffer(1)
    assert buf.wait_until_read_ready(timeout=0.01) is False
    assert buf.wait_until_write_ready(timeout=0.01) is True


def test_producer_consumer_threads():
    buf = DataBuffer(1)
    rounds = 50
    received = []

    def producer():
        for value in range(rounds):
            assert buf.wait_until_write_ready(timeout=5)
            buf.write_buffer()[0] = value
            buf.done_writing()

    def consumer():
        for _ in range(rounds):
            assert buf.wait_until_read_ready(timeout=5)
            received.append(buf.read_buffer()[0])
            buf.done_reading()

    threads = [threading.Thread(target=producer), threading.Thread(target=consumer)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    assert received == list(range(rounds))
    assert f"Number of write operations: {rounds}" in buf.report()
    assert f"Number of read operations:  {rounds}" in buf.report()