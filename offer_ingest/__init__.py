"""Insurance offer ingestion core.

Drives offer documents through the remote analysis service, classifies the
returned text into insurance sections and reconciles everything with the
secondary AI extraction into one unified offer record.
"""

__version__ = "0.1.0"
