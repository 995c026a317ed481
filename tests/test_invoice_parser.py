"""Tests for electronic invoice XML parsing."""

import pytest

from egresos.accounting.errors import ParseError
from egresos.accounting.invoice_parser import format_phone, is_likely_xml, parse_invoice_xml


def test_parses_header_parties_and_summary(invoice_xml):
    invoice = parse_invoice_xml(invoice_xml())

    assert invoice.document_type_code == "01"
    assert invoice.document_type_label == "Factura electrónica"
    assert invoice.consecutive_number == "00100001010000000001"
    assert invoice.issue_date == "2024-05-10T10:00:00-06:00"
    assert invoice.sale_condition == "01"

    assert invoice.issuer.name == "Proveedor Uno S.A."
    assert invoice.issuer.email == "ventas@proveedor.cr"
    assert invoice.issuer.phone == "+506 22223333"
    assert invoice.receiver_id == "3101123456"
    assert invoice.receiver.name == "Mi Empresa S.A."

    summary = invoice.summary
    assert summary.currency_code == "CRC"
    assert summary.total_sale == "100.00"
    assert summary.total_tax == "21.00"
    assert summary.total_document == "121.00"
    assert summary.payment_methods[0].type_code == "04"


def test_credit_note_root_gets_code_03(invoice_xml):
    invoice = parse_invoice_xml(invoice_xml(root="NotaCreditoElectronica"))
    assert invoice.document_type_code == "03"


def test_receiver_message_has_label_but_no_code():
    invoice = parse_invoice_xml("<MensajeReceptor><Clave>123</Clave></MensajeReceptor>")
    assert invoice.document_type_code is None
    assert invoice.document_type_label == "Mensaje receptor (confirmación)"
    assert invoice.summary is None


def test_unknown_root_keeps_its_name_as_label():
    invoice = parse_invoice_xml("<Otro><Clave>1</Clave></Otro>")
    assert invoice.document_type_code is None
    assert invoice.document_type_label == "Otro"


def test_namespace_prefixes_are_ignored():
    xml = """<fe:FacturaElectronica xmlns:fe="urn:x">
      <fe:NumeroConsecutivo>55</fe:NumeroConsecutivo>
      <fe:ResumenFactura><fe:TotalComprobante>10.00</fe:TotalComprobante></fe:ResumenFactura>
    </fe:FacturaElectronica>"""
    invoice = parse_invoice_xml(xml)
    assert invoice.consecutive_number == "55"
    assert invoice.summary.total_document == "10.00"


def test_missing_receiver_gives_blank_receiver_id(invoice_xml):
    invoice = parse_invoice_xml(invoice_xml(receiver_id=None))
    assert invoice.receiver is None
    assert invoice.receiver_id == ""


def test_zero_tax_lines_are_dropped(invoice_xml):
    invoice = parse_invoice_xml(invoice_xml(tax_lines=(("01", "08", "21.00"), ("01", "01", "0.00"))))
    lines = invoice.summary.tax_breakdown
    assert len(lines) == 1
    assert lines[0].key == ("01", "08")
    assert lines[0].tax_amount == "21.00"


def test_tax_rate_is_inferred_from_line_taxes(invoice_xml):
    invoice = parse_invoice_xml(invoice_xml())
    assert invoice.summary.tax_breakdown[0].rate_percent == "13.00"


def test_discounts_fall_back_to_line_discounts(invoice_xml):
    invoice = parse_invoice_xml(invoice_xml(total_discounts=None, line_discounts=("5.00", "2.50")))
    assert invoice.summary.total_discounts == "7.50"


def test_discounts_absent_everywhere_stay_none(invoice_xml):
    invoice = parse_invoice_xml(invoice_xml(total_discounts=None))
    assert invoice.summary.total_discounts is None


def test_line_items_are_not_exposed(invoice_xml):
    invoice = parse_invoice_xml(invoice_xml())
    assert not hasattr(invoice, "lines")


def test_parsing_the_same_text_twice_gives_equal_records(invoice_xml):
    xml = invoice_xml(tax_lines=(("01", "08", "13.00"), ("01", "02", "1.00")), line_discounts=("2.00",))
    assert parse_invoice_xml(xml) == parse_invoice_xml(xml)


def test_declared_latin1_encoding_does_not_garble_decoded_text(invoice_xml):
    xml = invoice_xml(issuer_name="Ferretería Ñandú").replace('encoding="utf-8"', 'encoding="ISO-8859-1"')
    invoice = parse_invoice_xml(xml)
    assert invoice.issuer.name == "Ferretería Ñandú"


def test_leading_byte_order_mark_is_ignored(invoice_xml):
    assert parse_invoice_xml("\ufeff" + invoice_xml()).document_type_code == "01"


@pytest.mark.parametrize("raw", ["", "   ", "no es xml", "<Factura><abierto></Factura>"])
def test_malformed_input_raises_parse_error(raw):
    with pytest.raises(ParseError):
        parse_invoice_xml(raw)


def test_external_entities_are_not_resolved(tmp_path):
    secret = tmp_path / "secret.txt"
    secret.write_text("top secret")
    xml = (
        f'<!DOCTYPE f [<!ENTITY x SYSTEM "file://{secret}">]>'
        "<FacturaElectronica><NumeroConsecutivo>&x;</NumeroConsecutivo></FacturaElectronica>"
    )
    invoice = parse_invoice_xml(xml)
    assert invoice.consecutive_number != "top secret"


def test_format_phone_variants():
    assert format_phone("506", "22223333") == "+506 22223333"
    assert format_phone(None, "22223333") == "22223333"
    assert format_phone("506", None) == "+506"
    assert format_phone(None, None) is None


def test_is_likely_xml():
    assert is_likely_xml("factura.XML")
    assert is_likely_xml("sin_extension", "application/xml")
    assert not is_likely_xml("factura.pdf", "application/pdf")
