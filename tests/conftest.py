"""Shared fixtures: a throwaway XML store, a small expense catalog and an invoice XML builder."""

import pytest

from egresos.accounting.aggregation import AggregationEngine
from egresos.accounting.categorizer import ExpenseCatalog
from egresos.accounting.ingestion import IngestionPipeline
from egresos.accounting.storage import XmlStore

NAMESPACE = "https://cdn.comprobanteselectronicos.go.cr/xml-schemas/v4.4/facturaElectronica"


def make_invoice_xml(
    root="FacturaElectronica",
    consecutive="00100001010000000001",
    issue_date="2024-05-10T10:00:00-06:00",
    issuer_name="Proveedor Uno S.A.",
    issuer_email="ventas@proveedor.cr",
    receiver_id="3101123456",
    receiver_name="Mi Empresa S.A.",
    currency="CRC",
    total_sale="100.00",
    total_discounts="0.00",
    total_tax="21.00",
    other_charges=None,
    total_document="121.00",
    tax_lines=(("01", "08", "21.00"),),
    line_discounts=(),
    extra_summary="",
):
    receiver = ""
    if receiver_id is not None:
        receiver = f"""
  <Receptor>
    <Nombre>{receiver_name}</Nombre>
    <Identificacion><Tipo>02</Tipo><Numero>{receiver_id}</Numero></Identificacion>
  </Receptor>"""

    discount_lines = "".join(
        f"<Descuento><MontoDescuento>{amount}</MontoDescuento></Descuento>" for amount in line_discounts
    )
    breakdown = "".join(
        f"<TotalDesgloseImpuesto><Codigo>{code}</Codigo><CodigoTarifaIVA>{rate}</CodigoTarifaIVA>"
        f"<TotalMontoImpuesto>{amount}</TotalMontoImpuesto></TotalDesgloseImpuesto>"
        for code, rate, amount in tax_lines
    )
    line_taxes = "".join(
        f"<Impuesto><Codigo>{code}</Codigo><CodigoTarifaIVA>{rate}</CodigoTarifaIVA>"
        f"<Tarifa>13.00</Tarifa><Monto>{amount}</Monto></Impuesto>"
        for code, rate, amount in tax_lines
    )

    def tag(name, value):
        return f"<{name}>{value}</{name}>" if value is not None else ""

    return f"""<?xml version="1.0" encoding="utf-8"?>
<{root} xmlns="{NAMESPACE}">
  <Clave>50610052400310112345600100001010000000001100000001</Clave>
  <NumeroConsecutivo>{consecutive}</NumeroConsecutivo>
  <FechaEmision>{issue_date}</FechaEmision>
  <Emisor>
    <Nombre>{issuer_name}</Nombre>
    <Identificacion><Tipo>02</Tipo><Numero>3101999999</Numero></Identificacion>
    <Telefono><CodigoPais>506</CodigoPais><NumTelefono>22223333</NumTelefono></Telefono>
    <CorreoElectronico>{issuer_email}</CorreoElectronico>
  </Emisor>{receiver}
  <CondicionVenta>01</CondicionVenta>
  <DetalleServicio>
    <LineaDetalle>
      <NumeroLinea>1</NumeroLinea>{discount_lines}{line_taxes}
    </LineaDetalle>
  </DetalleServicio>
  <ResumenFactura>
    <CodigoTipoMoneda><CodigoMoneda>{currency}</CodigoMoneda><TipoCambio>1.00000</TipoCambio></CodigoTipoMoneda>
    {tag("TotalVenta", total_sale)}
    {tag("TotalDescuentos", total_discounts)}
    {breakdown}
    {tag("TotalImpuesto", total_tax)}
    {tag("TotalOtrosCargos", other_charges)}
    <MedioPago><TipoMedioPago>04</TipoMedioPago><TotalMedioPago>{total_document}</TotalMedioPago></MedioPago>
    {tag("TotalComprobante", total_document)}
    {extra_summary}
  </ResumenFactura>
</{root}>
"""


@pytest.fixture
def invoice_xml():
    return make_invoice_xml


@pytest.fixture
def catalog():
    return ExpenseCatalog([
        {"codigo": "001", "nombre": "Alquiler", "cuenta": "5-01-01"},
        {"codigo": "009", "nombre": "Combustible", "cuenta": "5-04-01"},
        {"codigo": "099", "nombre": "Otros gastos"},
    ])


@pytest.fixture
def engine(catalog):
    return AggregationEngine(catalog, default_currency="CRC")


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "xml_egresos.db"


@pytest.fixture
async def store(db_path):
    store = XmlStore(db_path)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def pipeline(store):
    ticks = iter(range(1000, 100000, 1000))
    return IngestionPipeline(store, clock=lambda: next(ticks))
