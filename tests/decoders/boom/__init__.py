"""Raises on the first block it decodes."""

from pdconform.engine.decoder import Decoder as BaseDecoder


class Decoder(BaseDecoder):
    id = "boom"
    name = "Boom"
    inputs = ["logic"]
    outputs = ["boom"]
    channels = ({"id": "data", "name": "DATA", "desc": "Data line"},)

    def decode(self, ss, es, data):
        raise RuntimeError("decoder blew up at sample %d" % ss)
