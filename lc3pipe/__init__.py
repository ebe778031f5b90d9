"""A five-stage pipelined LC-3 virtual machine with an object-file loader and per-cycle pipeline trace."""

__version__ = "0.1.0"