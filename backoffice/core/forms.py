# backoffice/core/forms.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Optional

from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import StringField, PasswordField, IntegerField
from wtforms.fields.core import Field
from wtforms.validators import DataRequired, InputRequired, Optional as Opt, Length, Email, StopValidation

from backoffice.core.errors import InvalidInput
from backoffice.core.services import LineItemDTO


# =============================================================================
# Utilidades
# =============================================================================

def _q2(v: Decimal) -> Decimal:
    return v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def _q4(v: Decimal) -> Decimal:
    return v.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)

def parse_decimal(value: Any, places: int = 2) -> Decimal:
    """
    Converte texto ou número JSON para Decimal aceitando vírgula ou ponto.
    Vazio vira 0.
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, bool):
        raise ValueError("Valor numérico inválido")
    if isinstance(value, (int, float, Decimal)):
        d = Decimal(str(value))
    else:
        s = str(value).strip()
        if s == "":
            return Decimal("0")
        s = s.replace(".", "").replace(",", ".") if s.count(",") == 1 and s.count(".") > 0 else s.replace(",", ".")
        try:
            d = Decimal(s)
        except InvalidOperation:
            raise ValueError("Valor numérico inválido")
    if not d.is_finite():
        raise ValueError("Valor numérico inválido")
    return _q4(d) if places == 4 else _q2(d)

def form_errors(form) -> dict:
    return {k: [str(m) for m in v] for k, v in form.errors.items()}

def validated(form):
    if not form.validate():
        raise InvalidInput("Dados inválidos", details=form_errors(form))
    return form


# =============================================================================
# Campos customizados
# =============================================================================

class DecimalMoneyField(Field):
    """
    Entrada textual ou numérica que vira Decimal com 2 casas.
    """
    def __init__(self, label=None, validators=None, places: int = 2, **kwargs):
        super().__init__(label, validators, **kwargs)
        self.places = places

    def _value(self):
        return str(self.data) if isinstance(self.data, Decimal) else (self.data or "")

    def process_formdata(self, valuelist):
        if valuelist:
            self.data = parse_decimal(valuelist[0], places=self.places)

class DecimalQtyField(DecimalMoneyField):
    """
    Entrada textual ou numérica que vira Decimal com 4 casas.
    """
    def __init__(self, label=None, validators=None, **kwargs):
        super().__init__(label, validators, places=4, **kwargs)

class Supplied:
    """
    Igual ao InputRequired, mas aceita 0 numérico vindo do JSON
    (InputRequired recusa qualquer valor falso).
    """
    field_flags = {"required": True}

    def __init__(self, message: str = "Campo obrigatório"):
        self.message = message

    def __call__(self, form, field):
        if not field.raw_data or field.raw_data[0] is None or field.raw_data[0] == "":
            field.errors[:] = []
            raise StopValidation(self.message)

class FlagField(Field):
    """
    Booleano vindo de JSON. Diferente do BooleanField, ausência mantém o default.
    """
    TRUE_VALUES = ("1", "true", "yes", "on", "sim")

    def process_formdata(self, valuelist):
        if valuelist:
            v = valuelist[0]
            self.data = v if isinstance(v, bool) else str(v).strip().lower() in self.TRUE_VALUES


# =============================================================================
# Base das APIs
# =============================================================================

class ApiForm(FlaskForm):
    class Meta:
        # CSRFProtect já valida a requisição; o corpo é JSON
        csrf = False


# =============================================================================
# Autenticação
# =============================================================================

class LoginForm(ApiForm):
    email = StringField("E-mail", validators=[DataRequired(), Email(), Length(max=180)])
    password = PasswordField("Senha", validators=[DataRequired(), Length(min=6, max=72)])
    remember = FlagField("Manter conectado", default=False)


# =============================================================================
# Cadastros
# =============================================================================

class ProductForm(ApiForm):
    name = StringField("Nome", validators=[DataRequired(), Length(max=200)])
    category = StringField("Categoria", validators=[Opt(), Length(max=120)])
    unit = StringField("Unidade", default="un", validators=[Opt(), Length(max=10)])
    cost_price = DecimalMoneyField("Custo", default=Decimal("0.00"))
    sale_price = DecimalMoneyField("Preço de venda", default=Decimal("0.00"))
    min_stock = DecimalQtyField("Estoque mínimo", default=Decimal("0.0000"))
    barcode = StringField("Código de barras", validators=[Opt(), Length(max=64)])
    is_active = FlagField("Ativo", default=True)
    # Só aceito na criação (estoque inicial); na edição serve para detectar tentativa de alterar saldo
    opening_stock = DecimalQtyField("Estoque inicial", default=Decimal("0.0000"))
    stock_qty = DecimalQtyField("Estoque", default=None)

    def product_data(self) -> dict:
        data = {k: getattr(self, k).data for k in (
            "name", "category", "unit", "cost_price", "sale_price", "min_stock", "barcode", "is_active"
        )}
        if self.stock_qty.raw_data and self.stock_qty.raw_data[0] is not None:
            data["stock_qty"] = self.stock_qty.data
        return data


class PartyForm(ApiForm):
    name = StringField("Nome", validators=[DataRequired(), Length(max=180)])
    document = StringField("Documento", validators=[Opt(), Length(max=32)])
    email = StringField("E-mail", validators=[Opt(), Email(), Length(max=180)])
    phone = StringField("Telefone", validators=[Opt(), Length(max=40)])
    address = StringField("Endereço", validators=[Opt(), Length(max=255)])


# =============================================================================
# Vendas e compras
# =============================================================================

class LineItemForm(ApiForm):
    product_id = IntegerField("Produto", validators=[InputRequired()])
    qty = DecimalQtyField("Quantidade", validators=[Supplied()], default=None)
    unit_price = DecimalMoneyField("Preço unitário", validators=[Supplied()], default=None)


class SaleForm(ApiForm):
    customer_id = IntegerField("Cliente", validators=[InputRequired()])
    discount = DecimalMoneyField("Desconto", default=Decimal("0.00"))
    idempotency_key = StringField("Chave de idempotência", validators=[Opt(), Length(max=80)])


class PurchaseForm(ApiForm):
    supplier_id = IntegerField("Fornecedor", validators=[InputRequired()])
    notes = StringField("Observações", validators=[Opt(), Length(max=2000)])
    idempotency_key = StringField("Chave de idempotência", validators=[Opt(), Length(max=80)])


def parse_items(raw: Optional[list]) -> List[LineItemDTO]:
    """Valida cada item com LineItemForm. Faixas (qtd > 0, preço >= 0) ficam com o serviço."""
    if not isinstance(raw, list) or not raw:
        raise InvalidInput("Lista de itens vazia")
    items = []
    for n, entry in enumerate(raw, start=1):
        if not isinstance(entry, dict):
            raise InvalidInput(f"Item {n} inválido")
        form = LineItemForm(formdata=MultiDict(entry))
        if not form.validate():
            raise InvalidInput(f"Item {n} inválido", details=form_errors(form))
        items.append(LineItemDTO(
            product_id=form.product_id.data,
            qty=form.qty.data,
            unit_price=form.unit_price.data,
        ))
    return items
