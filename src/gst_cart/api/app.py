"""API Flask: intenções de carrinho (itens, frete, cupom, jurisdição) e sessão (login/logout).

Sessão de carrinho escolhida pelo header X-Cart-Session; trace por X-Trace-Id.
"""
from __future__ import annotations
from flask import Flask, Response, request, jsonify
from kink import di
from pydantic import ValidationError
from ..core.di import bootstrap_di, get_coordinator
from ..core.logging import set_trace_id, set_cart_session, get_logger
from ..core.settings import Settings
from ..core.summary import SummaryRenderer
from ..domain.errors import RemoteSyncFailed
from ..ports.interfaces import AddItemDTO, CouponDTO, JurisdictionDTO, LoginDTO, ShippingDTO, UpdateQuantityDTO
from ..sync.coordinator import SyncCoordinator

log = get_logger()

def _body() -> dict:
    return request.get_json(force=True, silent=True) or {}

def _coordinator() -> SyncCoordinator:
    set_trace_id(request.headers.get("X-Trace-Id"))
    sid = request.headers.get("X-Cart-Session") or "default"
    set_cart_session(sid)
    return get_coordinator(sid)

def create_app(settings: Settings | None = None) -> Flask:
    app = Flask(__name__)
    bootstrap_di(settings)

    @app.errorhandler(RemoteSyncFailed)
    def remote_failed(exc: RemoteSyncFailed):
        """Intenção rejeitada: o carrinho segue como estava; o cliente decide o retry."""
        return jsonify(exc.to_dict()), 502

    @app.errorhandler(ValidationError)
    def invalid(exc: ValidationError):
        return jsonify({"error": "invalid_request",
                        "detail": exc.errors(include_url=False, include_context=False, include_input=False)}), 400

    @app.get("/healthz")
    def healthz():
        """Health check básico."""
        return {"ok": True}

    @app.get("/cart")
    def get_cart():
        c = _coordinator()
        return jsonify({
            "snapshot": c.snapshot().model_dump(mode="json"),
            "state": c.state.value,
            "memory_only": c.memory_only,
        })

    @app.get("/cart/summary.txt")
    def cart_summary():
        c = _coordinator()
        text = di[SummaryRenderer].render(c.snapshot())
        return Response(text, mimetype="text/plain")

    @app.post("/cart/items")
    def add_item():
        c = _coordinator()
        dto = AddItemDTO.model_validate(_body())
        res = c.add_item(dto.to_line_item())
        log.info("api_add_item", product_id=dto.product_id, quantity=dto.quantity)
        return jsonify(res.to_dict()), 201

    @app.patch("/cart/items/<item_id>")
    def update_item(item_id: str):
        c = _coordinator()
        dto = UpdateQuantityDTO.model_validate(_body())
        return jsonify(c.update_quantity(item_id, dto.quantity).to_dict())

    @app.delete("/cart/items/<item_id>")
    def remove_item(item_id: str):
        return jsonify(_coordinator().remove_item(item_id).to_dict())

    @app.delete("/cart")
    def clear_cart():
        return jsonify(_coordinator().clear().to_dict())

    @app.put("/cart/shipping")
    def set_shipping():
        c = _coordinator()
        dto = ShippingDTO.model_validate(_body())
        if dto.method is not None:
            return jsonify(c.set_shipping_method(dto.method, dto.apply_tax).to_dict())
        if dto.amount is None:
            return {"error": "missing method/amount"}, 400
        return jsonify(c.set_shipping(dto.amount, dto.apply_tax).to_dict())

    @app.post("/cart/coupon")
    def apply_coupon():
        c = _coordinator()
        dto = CouponDTO.model_validate(_body())
        return jsonify(c.apply_coupon(dto.code).to_dict())

    @app.delete("/cart/coupon")
    def remove_coupon():
        return jsonify(_coordinator().remove_coupon().to_dict())

    @app.put("/cart/jurisdiction")
    def set_jurisdiction():
        """Atualiza estado do comprador e/ou do vendedor; campos ausentes ficam como estão."""
        c = _coordinator()
        dto = JurisdictionDTO.model_validate(_body())
        res = None
        if dto.buyer_state is not None:
            res = c.set_buyer_state(dto.buyer_state)
        if dto.seller_state is not None:
            res = c.set_seller_state(dto.seller_state)
        if res is None:
            return {"error": "missing buyer_state/seller_state"}, 400
        return jsonify(res.to_dict())

    @app.post("/session/login")
    def login():
        c = _coordinator()
        dto = LoginDTO.model_validate(_body())
        report = c.login(dto.token)
        return jsonify(report.to_dict() | {"state": c.state.value})

    @app.post("/session/logout")
    def logout():
        c = _coordinator()
        snap = c.logout()
        return jsonify({"snapshot": snap.model_dump(mode="json"), "state": c.state.value})

    return app

def main() -> None:
    settings = Settings()
    app = create_app(settings)
    app.run(host=settings.host, port=settings.port, debug=settings.flask_debug)
