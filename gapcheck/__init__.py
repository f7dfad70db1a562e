"""gapcheck: verify prime gap records with the strong Baillie-PSW test.

Reads gap listings (standard fixed-column layout or free-form
``gap  prime`` lines), confirms the initiating prime, sieves the interior
of each gap with small primes, walks the survivors with the BPSW oracle
and reports whether P1 + G really is the next prime after P1.
"""
import sys

# ─────────────────────────────────────────────────────────────────────────────
# Lift Python's big-int→str limit (3.11+); gap records run to 300K digits
# ─────────────────────────────────────────────────────────────────────────────
if hasattr(sys, "set_int_max_str_digits"):
    sys.set_int_max_str_digits(0)

program_name, __version__ = "gapcheck", "4.0.0"
