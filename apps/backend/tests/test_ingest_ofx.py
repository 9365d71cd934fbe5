"""
OFX/QFX adapter tests
"""

from datetime import date
from decimal import Decimal

import pytest

from ledgersync.errors import ParseError
from ledgersync.ingest import parse
from ledgersync.ingest.ofx import parse_ofx, sgml_to_xml


BANK_SGML = """OFXHEADER:100
DATA:OFXSGML
VERSION:102

<OFX>
<SIGNONMSGSRSV1><SONRS><STATUS><CODE>0<SEVERITY>INFO</STATUS></SONRS></SIGNONMSGSRSV1>
<BANKMSGSRSV1>
<STMTTRNRS>
<STMTRS>
<CURDEF>AUD
<BANKACCTFROM>
<BANKID>063000
<ACCTID>12345678
<ACCTTYPE>CHECKING
</BANKACCTFROM>
<BANKTRANLIST>
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20240105120000[+10:EST]
<TRNAMT>-42.50
<FITID>A-1
<NAME>WOOLWORTHS
<MEMO>Groceries & more
</STMTTRN>
<STMTTRN>
<TRNTYPE>CREDIT
<DTPOSTED>20240106
<TRNAMT>1,500.00
<FITID>A-2
<NAME>SALARY
</STMTTRN>
<STMTTRN>
<TRNTYPE>FEE
<DTPOSTED>20240107
<TRNAMT>5.00
<FITID>A-3
<NAME>ACCOUNT FEE
</STMTTRN>
</BANKTRANLIST>
</STMTRS>
</STMTTRNRS>
</BANKMSGSRSV1>
</OFX>
"""

CARD_XML = """<?xml version="1.0" encoding="UTF-8"?>
<?OFX OFXHEADER="200" VERSION="220"?>
<OFX>
  <CREDITCARDMSGSRSV1>
    <CCSTMTTRNRS>
      <CCSTMTRS>
        <CCACCTFROM><ACCTID>3742-XXXX-1001</ACCTID></CCACCTFROM>
        <BANKTRANLIST>
          <STMTTRN>
            <TRNTYPE>PAYMENT</TRNTYPE>
            <DTPOSTED>20240210</DTPOSTED>
            <TRNAMT>200.00</TRNAMT>
            <FITID>C-9</FITID>
            <NAME>PAYMENT RECEIVED</NAME>
          </STMTTRN>
        </BANKTRANLIST>
      </CCSTMTRS>
    </CCSTMTTRNRS>
  </CREDITCARDMSGSRSV1>
</OFX>
"""


class TestSgmlToXml:
    def test_closes_leaf_tags(self):
        xml = sgml_to_xml("<OFX><CODE>0<SEVERITY>INFO</OFX>")
        assert "<CODE>0</CODE>" in xml
        assert "<SEVERITY>INFO</SEVERITY>" in xml

    def test_escapes_bare_ampersand(self):
        xml = sgml_to_xml("<OFX><MEMO>A & B</OFX>")
        assert "<MEMO>A &amp; B</MEMO>" in xml

    def test_missing_ofx_tag(self):
        with pytest.raises(ParseError):
            sgml_to_xml("hello world")

    def test_empty_leaf_is_closed(self):
        xml = sgml_to_xml("<OFX>\n<STMTTRN>\n<NAME>Shop\n<MEMO>\n</STMTTRN>\n</OFX>")
        assert "<MEMO></MEMO>" in xml
        assert xml.endswith("</STMTTRN>\n</OFX>")

    def test_unbalanced_tags_are_repaired(self):
        xml = sgml_to_xml("<OFX><BANKTRANLIST><STMTTRN><FITID>1</NAME></BANKTRANLIST>")
        assert xml.split("\n")[-3:] == ["</STMTTRN>", "</BANKTRANLIST>", "</OFX>"]


class TestParseOfx:
    def test_bank_statement_fields(self):
        result = parse_ofx(BANK_SGML)

        assert len(result.records) == 3
        first = result.records[0]
        assert first.external_id == "A-1"
        assert first.account_ref == "12345678"
        assert first.date == date(2024, 1, 5)
        assert first.amount == Decimal("-42.50")
        assert first.description == "Groceries & more"
        assert first.raw_type == "DEBIT"

    def test_name_used_when_memo_missing(self):
        result = parse_ofx(BANK_SGML)
        assert result.records[1].description == "SALARY"
        assert result.records[1].amount == Decimal("1500.00")

    def test_unsigned_debit_type_is_negated(self):
        result = parse_ofx(BANK_SGML)
        fee = result.records[2]
        assert fee.raw_type == "FEE"
        assert fee.amount == Decimal("-5.00")

    def test_card_statement_amounts_trusted(self):
        result = parse_ofx(CARD_XML)
        assert result.accounts == ["3742-XXXX-1001"]
        assert result.records[0].amount == Decimal("200.00")

    def test_empty_memo_falls_back_to_name(self):
        data = BANK_SGML.replace("<MEMO>Groceries & more", "<MEMO>")
        result = parse_ofx(data)
        assert len(result.records) == 3
        assert result.records[0].description == "WOOLWORTHS"

    def test_bad_record_becomes_warning(self):
        data = BANK_SGML.replace("<DTPOSTED>20240106", "<DTPOSTED>notadate")
        result = parse_ofx(data)
        assert len(result.records) == 2
        assert any("DTPOSTED" in w for w in result.warnings)

    def test_no_transactions_raises(self):
        empty = "<OFX><BANKMSGSRSV1><STMTTRNRS><STMTRS><BANKACCTFROM><ACCTID>1</BANKACCTFROM></STMTRS></STMTTRNRS></BANKMSGSRSV1></OFX>"
        with pytest.raises(ParseError):
            parse_ofx(empty)

    def test_dispatch_accepts_qfx_bytes(self):
        result = parse(BANK_SGML.encode("cp1252"), "qfx")
        assert len(result.records) == 3

    def test_unknown_format(self):
        with pytest.raises(ParseError):
            parse("x", "csv")
