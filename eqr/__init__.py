"""
eQR Engine
==========
Decoder and exercise runtime for educational payloads embedded in scanned
codes.

Architecture:
    - Bit Reader: MSB-first cursor over the raw payload bytes
    - Elias-Delta Codec: Self-delimiting signed and unsigned integers
    - Payload Decoder: Header, solution and exercise phases into an IR
    - Expression Compiler: Shunting-yard translation to VM instructions
    - Stack VM: Executes programs with a bounded step count
    - Exercise Orchestrator: Random variables, substitution, answer checks

Version: 1.0.0
"""

__version__ = "1.0.0"
