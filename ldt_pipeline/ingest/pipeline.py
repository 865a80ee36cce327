"""
The pure part of message processing: decode, assemble, resolve.

Owner matching is kept separate because it is the only step that does I/O.
"""

from typing import NamedTuple

from ldt_pipeline.core.assembler import MessageAssembler
from ldt_pipeline.core.decoder import decode_bytes
from ldt_pipeline.core.errors import DecodeError
from ldt_pipeline.core.matcher import OwnerMatcher
from ldt_pipeline.core.models import FieldMap, Owner, RawMessage, Record
from ldt_pipeline.core.resolver import IdentifierResolver, ResolvedIdentifiers
from ldt_pipeline.observability import metrics


class DecodedMessage(NamedTuple):
    text: str
    records: list[Record]
    field_map: FieldMap
    identifiers: ResolvedIdentifiers


class MessagePipeline:
    """
    Runs Decoder -> Assembler -> Resolver for a raw message, then the matcher.
    """

    def __init__(
        self,
        assembler: MessageAssembler,
        resolver: IdentifierResolver,
        matcher: OwnerMatcher,
        encoding: str = "utf-8",
    ):
        self.assembler = assembler
        self.resolver = resolver
        self.matcher = matcher
        self.encoding = encoding

    def decode(self, message: RawMessage) -> DecodedMessage:
        """
        Decode and assemble a message and resolve its identifiers.

        Args:
            message: Message to process

        Returns:
            DecodedMessage

        Raises:
            DecodeError: If the payload or any line cannot be decoded
        """
        try:
            text, records = decode_bytes(message.payload, self.encoding)
        except DecodeError as e:
            metrics.record_decode_failure(e.reason.value, e.field_name)
            raise

        metrics.observe_histogram(metrics.records_per_message, len(records))
        field_map = self.assembler.assemble(records)
        for record in records:
            if not record.declared_length_ok:
                metrics.increment_counter(metrics.decode_warnings_total, warning="length_mismatch")

        identifiers = self.resolver.resolve(field_map, text, message.identifier_hints)
        metrics.record_identifier_resolution("bsnr", identifiers.bsnr_source)
        metrics.record_identifier_resolution("lanr", identifiers.lanr_source)

        return DecodedMessage(text, records, field_map, identifiers)

    def match(self, identifiers: ResolvedIdentifiers) -> Owner | None:
        """
        Look up the owner of resolved identifiers.

        Raises:
            StoreFailure: If the owner directory is unreachable
        """
        if not identifiers.complete:
            metrics.increment_counter(metrics.owner_match_total, result="incomplete_identifiers")
            return None
        owner = self.matcher.match(identifiers.bsnr, identifiers.lanr)
        metrics.increment_counter(
            metrics.owner_match_total, result="matched" if owner else "unmatched"
        )
        return owner
