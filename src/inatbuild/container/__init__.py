"""Container image packaging."""

from .layers import LayerBuilder, layer_digest
from .packager import CA_BUNDLE, ContainerPackager
from .provenance import provenance_payload, to_cbor, to_json

__all__ = [
    "CA_BUNDLE",
    "ContainerPackager",
    "LayerBuilder",
    "layer_digest",
    "provenance_payload",
    "to_cbor",
    "to_json",
]
