"""
Fachada de emisión AFIP: ticket -> secuencia -> CAE -> QR
"""
