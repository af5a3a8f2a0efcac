# app.py
# Interface Streamlit: streamlit run app.py

import datetime as dt
import logging
from decimal import Decimal
from typing import Callable, Optional

import pandas as pd
import streamlit as st

from catalog import Catalog
from costing import CmvEngine, index_by_id
from db import LedgerStore, INGREDIENT_UNITS, ORDER_STATUSES, TASK_CATEGORIES
from errors import NotFoundError, StorageError, ValidationError
from money import fmt_money, parse_brl_to_cents, cents_to_decimal
from orders import OrderEngine, TRANSITIONS, EDITABLE_STATUSES
from pricing import RecipeBook, calculate_pricing_cents, validate_margin, product_unit_cost, product_margin
from reports import dashboard_stats, period_report, report_csv, orders_frame
import settings

settings.configure_logging()
log = logging.getLogger("salgados.app")

STATUS_LABEL = {
    "draft": "Rascunho",
    "pending": "Pendente",
    "paid": "Pago",
    "delivered": "Entregue",
    "cancelled": "Cancelado",
}
CATEGORY_LABEL = {
    "preparacao": "Preparação",
    "montagem": "Montagem",
    "assamento": "Assamento",
    "embalagem": "Embalagem",
    "entrega": "Entrega",
}

# -----------------------
# Cache de recursos: store e engines
# -----------------------
@st.cache_resource(show_spinner=False)
def get_services():
    store = LedgerStore.from_url(settings.DATABASE_URL)
    return store, Catalog(store), OrderEngine(store), CmvEngine(store), RecipeBook(store)

store, catalog, order_engine, cmv_engine, recipe_book = get_services()

# -----------------------
# Utils UI
# -----------------------
def toast_ok(msg: str):
    st.success(msg)

def toast_err(msg: str):
    st.error(msg)

def run_action(fn: Callable, ok_msg: str, rerun: bool = True):
    """Executa uma operação e traduz validação x banco x sucesso para a UI."""
    try:
        result = fn()
    except (ValidationError, NotFoundError) as e:
        toast_err(str(e))
        return None
    except StorageError:
        log.exception("Falha de armazenamento")
        toast_err("Erro ao salvar no banco. Tente novamente.")
        return None
    clear_caches()
    toast_ok(ok_msg)
    if rerun:
        st.rerun()
    return result

def money_input(label: str, value: Decimal = Decimal("0"), key: Optional[str] = None) -> Decimal:
    """Campo texto em R$ convertido para centavos (evita erro de float)."""
    raw = st.text_input(label, value=f"{value:.2f}".replace(".", ","), key=key)
    return cents_to_decimal(parse_brl_to_cents(raw))

# -----------------------
# Cache de listas estáveis
# -----------------------
@st.cache_data(show_spinner=False, ttl=60)
def cached_products():
    return [(p.id, p.name, p.sale_price) for p in catalog.products(active_only=True)]

@st.cache_data(show_spinner=False, ttl=60)
def cached_ingredients():
    return [(i.id, i.name, i.unit) for i in catalog.ingredients()]

@st.cache_data(show_spinner=False, ttl=60)
def cached_customers():
    return [(c.id, c.name) for c in catalog.customers()]

def clear_caches():
    cached_products.clear()
    cached_ingredients.clear()
    cached_customers.clear()

def customer_name(customer_id, names) -> str:
    return names.get(customer_id, "Cliente não encontrado")

def product_name(product_id, names) -> str:
    return names.get(product_id, "Produto não encontrado")

# -----------------------
# Páginas
# -----------------------
def app_header():
    st.title(f"🥟 {store.get_config('app_name') or 'SalgadosPro'}")

def page_dashboard():
    st.subheader("Dashboard")
    orders = order_engine.list_orders()
    stats = dashboard_stats(orders, cmv_engine)
    c = st.columns(4)
    c[0].metric("Custos (CMV)", fmt_money(stats.total_costs))
    c[1].metric("Vendas do mês", fmt_money(stats.total_sales))
    c[2].metric("Lucro", fmt_money(stats.total_profit))
    c[3].metric("Pedidos ativos", stats.active_orders)

    st.markdown("### Alertas")
    # regenera uma vez por sessão ou sob demanda
    if st.button("Atualizar alertas") or not st.session_state.get("alerts_generated"):
        catalog.generate_alerts()
        st.session_state["alerts_generated"] = True
    unread = catalog.alerts(unread_only=True)[:3]
    if not unread:
        st.caption("Nenhum alerta.")
    for a in unread:
        with st.container(border=True):
            st.markdown(f"**{a.title}**")
            st.caption(a.description)
            if st.button("Marcar como lido", key=f"alert_read_{a.id}"):
                run_action(lambda a=a: catalog.mark_alert_as_read(a.id), "Alerta lido.")

def page_ingredients():
    st.subheader("Ingredientes")
    tab1, tab2 = st.tabs(["Lista", "Cadastro"])

    with tab2:
        with st.form("ing_form"):
            name = st.text_input("Nome")
            c1, c2 = st.columns(2)
            unit = c1.selectbox("Unidade", INGREDIENT_UNITS)
            qty = c2.number_input("Quantidade em estoque", min_value=0.0, step=1.0)
            cost = st.number_input("Custo por unidade (R$)", min_value=0.0, step=0.001, format="%.4f")
            c3, c4 = st.columns(2)
            expiry = c3.date_input("Validade", value=None)
            low = c4.number_input("Alerta de estoque baixo", min_value=0.0, step=1.0)
            if st.form_submit_button("Salvar"):
                run_action(
                    lambda: catalog.add_ingredient(name, unit=unit, quantity_on_hand=Decimal(str(qty)),
                                                   unit_cost=Decimal(str(cost)), expiry_date=expiry,
                                                   low_stock_threshold=Decimal(str(low))),
                    "Ingrediente criado.",
                )

    with tab1:
        ings = catalog.ingredients()
        rows = [
            {"ID": i.id, "Nome": i.name, "Estoque": float(i.quantity_on_hand), "Un": i.unit,
             "Custo/un": f"R$ {i.unit_cost:.4f}".replace(".", ","), "Validade": i.expiry_date,
             "Baixo?": "Sim" if i.quantity_on_hand <= (i.low_stock_threshold or 0) else ""}
            for i in ings
        ]
        st.dataframe(pd.DataFrame(rows), hide_index=True, use_container_width=True)

        sel = st.selectbox("Editar ingrediente", [None] + ings, format_func=lambda i: i.name if i else "-")
        if sel:
            c1, c2, c3 = st.columns(3)
            new_qty = c1.number_input("Estoque", min_value=0.0, value=float(sel.quantity_on_hand), key=f"ing_qty_{sel.id}")
            new_low = c2.number_input("Alerta", min_value=0.0, value=float(sel.low_stock_threshold or 0), key=f"ing_low_{sel.id}")
            new_exp = c3.date_input("Validade", value=sel.expiry_date, key=f"ing_exp_{sel.id}")
            new_cost = st.number_input("Custo por unidade (R$)", min_value=0.0, step=0.001, format="%.4f",
                                       value=float(sel.unit_cost), key=f"ing_cost_{sel.id}")
            b1, b2 = st.columns(2)
            if b1.button("Salvar alterações", key=f"ing_save_{sel.id}"):
                run_action(
                    lambda: catalog.update_ingredient(sel.id, quantity_on_hand=Decimal(str(new_qty)),
                                                      low_stock_threshold=Decimal(str(new_low)),
                                                      expiry_date=new_exp, unit_cost=Decimal(str(new_cost))),
                    "Ingrediente atualizado.",
                )
            if b2.button("Excluir", key=f"ing_del_{sel.id}"):
                run_action(lambda: catalog.delete_ingredient(sel.id), "Ingrediente excluído.")

def page_products():
    st.subheader("Produtos")
    ing_opts = cached_ingredients()
    ing_index = index_by_id(catalog.ingredients())

    st.markdown("### Novo Produto")
    comp_key = "new_product_composition"
    composition = st.session_state.setdefault(comp_key, [])
    c1, c2, c3 = st.columns([3, 1, 1])
    ing = c1.selectbox("Ingrediente", ing_opts, format_func=lambda t: f"{t[1]} ({t[2]})")
    q = c2.number_input("Qtd por unidade", min_value=0.0, step=0.1)
    if c3.button("Adicionar") and ing:
        composition.append({"ingredient_id": ing[0], "quantity_per_unit": Decimal(str(q))})
    for comp in composition:
        i = ing_index.get(comp["ingredient_id"])
        st.caption(f"• {i.name if i else 'Ingrediente não encontrado'} — {comp['quantity_per_unit']} {i.unit if i else ''}")

    with st.form("prod_new"):
        name = st.text_input("Nome do produto")
        price = money_input("Preço de venda (R$)")
        c1, c2 = st.columns(2)
        sku = c1.text_input("SKU")
        category = c2.text_input("Categoria")
        description = st.text_area("Descrição")
        if st.form_submit_button("Criar"):
            created = run_action(
                lambda: catalog.add_product(name, price, composition=list(composition), sku=sku,
                                            description=description, category=category),
                "Produto criado.", rerun=False,
            )
            if created:
                st.session_state[comp_key] = []
                st.rerun()

    st.markdown("### Produtos")
    rows = []
    for p in catalog.products():
        rows.append({
            "ID": p.id, "Nome": p.name, "Preço": fmt_money(p.sale_price),
            "Custo": fmt_money(product_unit_cost(p, ing_index)),
            "Margem %": float(product_margin(p, ing_index)),
            "Insumos": len(p.composition), "Ativo": p.active,
        })
    st.dataframe(pd.DataFrame(rows), hide_index=True, use_container_width=True)

    allp = catalog.products()
    psel = st.selectbox("Editar produto", [None] + allp, format_func=lambda p: p.name if p else "-")
    if psel:
        new_price = money_input("Preço de venda (R$)", Decimal(psel.sale_price), key=f"pprice_{psel.id}")
        new_active = st.checkbox("Ativo", value=bool(psel.active), key=f"pactive_{psel.id}")
        b1, b2 = st.columns(2)
        if b1.button("Salvar produto", key=f"psave_{psel.id}"):
            run_action(lambda: catalog.update_product(psel.id, sale_price=new_price, active=new_active),
                       "Produto atualizado.")
        if b2.button("Excluir", key=f"pdel_{psel.id}"):
            run_action(lambda: catalog.delete_product(psel.id), "Produto excluído.")

def page_customers():
    st.subheader("Clientes")
    with st.form("cli_new"):
        name = st.text_input("Nome")
        whatsapp = st.text_input("WhatsApp")
        notes = st.text_area("Observações")
        if st.form_submit_button("Salvar"):
            run_action(lambda: catalog.add_customer(name, whatsapp=whatsapp, notes=notes), "Cliente criado.")

    q = st.text_input("Pesquisar por nome")
    clients = [c for c in catalog.customers() if not q or q.lower() in c.name.lower()]
    rows = [{"ID": c.id, "Nome": c.name, "WhatsApp": c.whatsapp, "Obs": c.notes} for c in clients]
    st.dataframe(pd.DataFrame(rows), hide_index=True, use_container_width=True)

    sel = st.selectbox("Excluir cliente", [None] + clients, format_func=lambda c: c.name if c else "-")
    if sel and st.button("Excluir", key=f"cli_del_{sel.id}"):
        run_action(lambda: catalog.delete_customer(sel.id), "Cliente excluído.")

def page_order_new():
    st.subheader("Novo Pedido")
    cl_opts = cached_customers()
    pr_opts = cached_products()
    if not cl_opts or not pr_opts:
        st.info("Cadastre clientes e produtos antes.")
        return
    with st.form("order_new"):
        client = st.selectbox("Cliente", cl_opts, format_func=lambda t: t[1])
        item_rows = st.number_input("Quantos itens adicionar nesta tela?", min_value=1, max_value=10, value=1)
        entries = []
        for i in range(int(item_rows)):
            cols = st.columns((3, 1, 1))
            prod = cols[0].selectbox(f"Produto #{i+1}", pr_opts, key=f"prod_{i}", format_func=lambda t: t[1])
            qty = cols[1].number_input(f"Qtd #{i+1}", min_value=1, step=1, value=1, key=f"qty_{i}")
            with cols[2]:
                price = money_input(f"Preço unit. #{i+1}", Decimal(prod[2]) if prod else Decimal("0"), key=f"price_{i}")
            entries.append({"product_id": prod[0], "quantity": int(qty), "unit_price": price})
        c1, c2 = st.columns(2)
        with c1:
            delivery_fee = money_input("Taxa de entrega (R$)", key="fee_delivery")
        with c2:
            service_fee = money_input("Taxa de serviço (R$)", key="fee_service")
        status = st.selectbox("Status", ["draft", "pending"], format_func=STATUS_LABEL.get)
        notes = st.text_area("Observações")
        if st.form_submit_button("Criar Pedido"):
            o = run_action(
                lambda: order_engine.create_order(client[0], entries, delivery_fee=delivery_fee,
                                                  service_fee=service_fee, status=status, notes=notes),
                "Pedido criado.", rerun=False,
            )
            if o:
                toast_ok(f"Pedido #{o.id} criado com total {fmt_money(o.total_amount)}.")

def page_orders():
    st.subheader("Pedidos")
    status_filter = st.selectbox("Status", [None] + list(ORDER_STATUSES),
                                 format_func=lambda s: STATUS_LABEL.get(s, "Todos"))
    cust_names = {cid: n for cid, n in cached_customers()}
    prod_names = {p.id: p.name for p in catalog.products()}
    orders = order_engine.list_orders(status_filter)
    for o in sorted(orders, key=lambda o: o.created_at, reverse=True)[:50]:
        with st.container(border=True):
            items_txt = ", ".join(f"{it.quantity}x {product_name(it.product_id, prod_names)}" for it in o.items)
            st.markdown(f"**#{o.id}** — {customer_name(o.customer_id, cust_names)} • {STATUS_LABEL[o.status]}")
            st.caption(f"Itens: {items_txt}")
            st.caption(f"Total: {fmt_money(o.total_amount)} • Criado em {o.created_at:%d/%m/%Y}"
                       + (f" • Pago em {o.paid_at:%d/%m/%Y}" if o.paid_at else ""))
            cols = st.columns(4)
            if o.status in EDITABLE_STATUSES and cols[0].button("💰 Marcar como Pago", key=f"pay_{o.id}"):
                res = run_action(lambda o=o: order_engine.process_payment(o.id),
                                 "Pagamento processado e estoque atualizado", rerun=False)
                if res and res.shortages:
                    st.warning("Pagamento aplicado com faltas em alguns ingredientes.")
                elif res:
                    st.rerun()
            if o.status == "draft" and cols[1].button("Enviar (pendente)", key=f"pend_{o.id}"):
                run_action(lambda o=o: order_engine.update_order(o.id, status="pending"), "Pedido pendente.")
            if o.status == "paid" and cols[1].button("Entregue", key=f"deliv_{o.id}"):
                run_action(lambda o=o: order_engine.mark_delivered(o.id), "Pedido entregue.")
            if "cancelled" in TRANSITIONS[o.status]:
                reason = cols[2].text_input("Justificativa", key=f"just_{o.id}")
                if cols[2].button("Cancelar", key=f"cancel_{o.id}"):
                    run_action(lambda o=o: order_engine.cancel_order(o.id, reason), "Pedido cancelado.")
            if cols[3].button("Excluir", key=f"del_{o.id}"):
                run_action(lambda o=o: order_engine.delete_order(o.id), "Pedido excluído com sucesso")

def page_pricing():
    st.subheader("Precificação de Receitas")
    with st.form("pricing"):
        name = st.text_input("Nome da receita")
        cost_cents = parse_brl_to_cents(st.text_input("Custo dos insumos (R$)", value="0,00"))
        c1, c2 = st.columns(2)
        units = c1.number_input("Rendimento (unidades)", min_value=0, step=1, value=1)
        margin = c2.number_input("Margem (%)", min_value=-100.0, max_value=1000.0, step=5.0, value=50.0)
        calc = calculate_pricing_cents(cost_cents, units, margin)
        check = validate_margin(margin)
        if check.warning:
            st.warning(check.warning)
        if check.error:
            st.error(check.error)
        m = st.columns(3)
        m[0].metric("Custo unitário", fmt_money(calc.unit_cost))
        m[1].metric("Preço sugerido", fmt_money(calc.suggested_price))
        m[2].metric("Lucro/unidade", fmt_money(calc.profit_per_unit))
        if st.form_submit_button("Salvar receita"):
            run_action(lambda: recipe_book.save(name, cents_to_decimal(cost_cents), units, margin),
                       "Receita salva com sucesso")

    st.markdown("### Receitas salvas")
    for r in recipe_book.list():
        with st.container(border=True):
            st.markdown(f"**{r.name}** — preço sugerido {fmt_money(r.suggested_price)} "
                        f"• lucro {fmt_money(r.profit_per_unit)}/un • margem {r.margin_percent}%")
            if st.button("Remover", key=f"rec_del_{r.id}"):
                run_action(lambda r=r: recipe_book.delete(r.id), "Receita removida com sucesso")

def page_production():
    st.subheader("Produção")
    if st.button("Carregar checklist padrão"):
        run_action(catalog.seed_default_tasks, "Checklist carregado.")
    with st.form("task_new"):
        title = st.text_input("Título")
        description = st.text_input("Descrição")
        c1, c2 = st.columns(2)
        category = c1.selectbox("Categoria", TASK_CATEGORIES, format_func=CATEGORY_LABEL.get)
        due = c2.date_input("Vencimento", value=dt.date.today())
        if st.form_submit_button("Adicionar tarefa"):
            run_action(lambda: catalog.add_task(title, description, category, due_date=due), "Tarefa criada.")

    for cat in TASK_CATEGORIES:
        tasks = catalog.tasks(cat)
        if not tasks:
            continue
        done = sum(1 for t in tasks if t.done)
        st.markdown(f"#### {CATEGORY_LABEL[cat]} ({done}/{len(tasks)})")
        for t in tasks:
            checked = st.checkbox(f"{t.title} — {t.description or ''}", value=bool(t.done), key=f"task_{t.id}")
            if checked != bool(t.done):
                run_action(lambda t=t: catalog.toggle_task(t.id), "Tarefa atualizada.")

def page_reports():
    st.subheader("Relatórios")
    period = st.radio("Período", ["week", "month"], horizontal=True,
                      format_func=lambda p: "Semana" if p == "week" else "Mês")
    orders = order_engine.list_orders()
    rep = period_report(orders, cmv_engine, period)
    c = st.columns(3)
    c[0].metric("Total vendido", fmt_money(rep.total_earned))
    c[1].metric("Custos (CMV)", fmt_money(rep.total_spent))
    c[2].metric("Lucro líquido", fmt_money(rep.net_profit))
    chart = pd.DataFrame({"Vendas": [float(v) for v in rep.buckets.values()]}, index=list(rep.buckets.keys()))
    st.bar_chart(chart)
    st.download_button("Exportar CSV", report_csv(rep).encode("utf-8"),
                       file_name=f"relatorio_{period}.csv", mime="text/csv")

    st.markdown("### Pedidos")
    df = orders_frame(orders)
    costs = cmv_engine.order_costs(orders)
    df["custo"] = [float(costs[i][0]) if i in costs else None for i in df["id"]]
    df["custo_estimado"] = [costs[i][1] if i in costs else None for i in df["id"]]
    st.dataframe(df, hide_index=True, use_container_width=True)

def page_settings():
    st.subheader("Configurações")
    with st.form("form_cfg"):
        app_name = st.text_input("Nome do App", value=store.get_config("app_name") or "")
        logo_url = st.text_input("URL do logo", value=store.get_config("logo_url") or "")
        cmv = st.number_input("CMV Estimado (%)", min_value=0.0, max_value=100.0, step=0.5,
                              value=float(cmv_engine.cmv_percent()))
        if st.form_submit_button("Salvar Configurações"):
            def _save():
                store.set_config("cmv_estimated_percent", Decimal(str(cmv)))
                store.set_config("app_name", app_name)
                store.set_config("logo_url", logo_url)
            run_action(_save, "Configurações salvas")

# -----------------------
# Router
# -----------------------
PAGES = {
    "Dashboard": page_dashboard,
    "Ingredientes": page_ingredients,
    "Produtos": page_products,
    "Clientes": page_customers,
    "Pedidos – Novo": page_order_new,
    "Pedidos": page_orders,
    "Precificação": page_pricing,
    "Produção": page_production,
    "Relatórios": page_reports,
    "Configurações": page_settings,
}

def run_router():
    app_header()
    choice = st.sidebar.selectbox("Páginas", options=list(PAGES))
    PAGES.get(choice, page_dashboard)()

if __name__ == "__main__":
    run_router()
