"""
Carrier classifier — decides which carrier, if any, a script or witness item is.

Candidates are tried in a fixed order and the first structural match wins:

    output script   op_return -> stamps
    witness item    inscription -> taproot_annex -> witness_data

A match requires the ANCHOR magic at the exact offset the carrier grammar
puts the payload; the magic appearing elsewhere in the bytes is ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from anchorcodec.carriers import (
    CarrierKind, CarrierLocation, PayloadLocation, extract,
)

log = logging.getLogger(__name__)

CANDIDATES = {
    CarrierLocation.OUTPUT: (CarrierKind.OP_RETURN, CarrierKind.STAMPS),
    CarrierLocation.WITNESS: (
        CarrierKind.INSCRIPTION, CarrierKind.TAPROOT_ANNEX, CarrierKind.WITNESS_DATA,
    ),
}


@dataclass(frozen=True)
class CarrierContext:
    """Bytes to classify plus where they were found in the transaction."""

    location: CarrierLocation
    data: bytes

    @classmethod
    def output(cls, script_pubkey: bytes) -> CarrierContext:
        return cls(CarrierLocation.OUTPUT, bytes(script_pubkey))

    @classmethod
    def witness(cls, item: bytes) -> CarrierContext:
        return cls(CarrierLocation.WITNESS, bytes(item))


def detect(context: CarrierContext) -> tuple[CarrierKind, PayloadLocation | None]:
    """Classify and return the payload location of the winning carrier."""
    for kind in CANDIDATES[context.location]:
        found = extract(kind, context.data)
        if found is not None:
            log.debug("%s %d bytes matched %s at %d..%d",
                      context.location.value, len(context.data), kind,
                      found.start, found.end)
            return kind, found
    return CarrierKind.NONE, None


def classify(context: CarrierContext) -> CarrierKind:
    kind, _found = detect(context)
    return kind


def classify_output_script(script_pubkey: bytes) -> CarrierKind:
    return classify(CarrierContext.output(script_pubkey))


def classify_witness_item(item: bytes) -> CarrierKind:
    return classify(CarrierContext.witness(item))
