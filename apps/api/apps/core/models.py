"""
Core models: identifier_sequence
"""
from django.db import models


class IdentifierSequence(models.Model):
    """
    Named counter used to mint human-readable identifiers (e.g. PAT000001).

    Rows are locked with SELECT ... FOR UPDATE and incremented inside the
    caller's transaction, so concurrent writers get distinct values.
    """
    name = models.CharField(max_length=64, primary_key=True)
    last_value = models.PositiveBigIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'identifier_sequence'
        verbose_name = 'Identifier Sequence'
        verbose_name_plural = 'Identifier Sequences'

    def __str__(self):
        return f"{self.name}={self.last_value}"
