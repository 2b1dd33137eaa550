"""
Tests for line-protocol formatting of location samples.
"""
from vm_client import format_line


def test_demo_record_matches_template():
    """The demo sample produces the exact record the store expects."""
    T = 1_700_000_000_000
    line = format_line("333", T - 10000, 111.11, 111.11)
    assert line == f"t_zbs,user_id=333,u_ts={T - 10000} j=111.110000,w=111.110000\n"


def test_custom_measurement():
    line = format_line("42", 5, -0.5, 45.25, measurement="trail")
    assert line == "trail,user_id=42,u_ts=5 j=-0.500000,w=45.250000\n"


def test_numbers_are_never_scientific():
    """Very small and very large coordinates stay in decimal notation."""
    line = format_line("1", 0, 1e-7, 1e20)
    fields = line.split(" ")[1].strip()
    assert fields == "j=0.000000,w=100000000000000000000.000000"
    assert "e" not in fields


def test_record_is_single_line():
    line = format_line("333", 1, 1.0, 2.0)
    assert line.endswith("\n")
    assert line.count("\n") == 1
