"""
Known QuickBooks Online report endpoints and the query parameters each accepts.

Used to reject misspelled parameters before a request is sent. Report names
missing from this table are passed through unchecked.
"""

_DATE_RANGE = ("date_macro", "start_date", "end_date")
_TXN_LIST = (
    "date_macro", "payment_method", "duedate_macro", "arpaid", "bothamount",
    "transaction_type", "docnum", "start_moddate", "source_account_type",
    "group_by", "start_date", "department", "start_duedate", "columns",
    "end_duedate", "end_date", "memo", "appaid", "moddate_macro", "printed",
    "createdate_macro", "cleared", "qzurl", "term", "end_createdate", "name",
    "sort_by", "sort_order", "start_createdate", "end_moddate",
)

REPORT_PARAMS: dict[str, frozenset[str]] = {
    "AccountList": frozenset({"accounting_method", "summarize_column_by", *_DATE_RANGE}),
    "AgedPayableDetail": frozenset({"as_of_date", "aging_method", "vendor", "columns"}),
    "AgedPayables": frozenset({
        "customer", "qzurl", "vendor", "date_macro", "department",
        "report_date", "sort_order", "aging_method",
    }),
    "AgedReceivableDetail": frozenset({
        "customer", "shipvia", "term", "end_duedate", "start_duedate", "custom1",
        "custom2", "custom3", "report_date", "num_periods", "aging_method",
        "past_due", "aging_period", "columns",
    }),
    "AgedReceivables": frozenset({
        "customer", "qzurl", "date_macro", "aging_method", "report_date",
        "sort_order", "department",
    }),
    "BalanceSheet": frozenset({
        "customer", "qzurl", "accounting_method", "adjusted_gain_loss", "class",
        "item", "sort_order", "summarize_column_by", "department", "vendor",
        *_DATE_RANGE,
    }),
    "CashFlow": frozenset({
        "customer", "vendor", "class", "item", "sort_order",
        "summarize_column_by", "department", *_DATE_RANGE,
    }),
    "CustomerBalance": frozenset({
        "customer", "accounting_method", "date_macro", "arpaid", "report_date",
        "sort_order", "summarize_column_by", "department",
    }),
    "CustomerIncome": frozenset({
        "customer", "term", "accounting_method", "class", "sort_order",
        "summarize_column_by", "department", "vendor", *_DATE_RANGE,
    }),
    "GeneralLedger": frozenset({
        "customer", "account", "accounting_method", "source_account",
        "account_type", "sort_by", "sort_order", "summarize_column_by", "class",
        "item", "department", "vendor", "columns", *_DATE_RANGE,
    }),
    "JournalReport": frozenset({"sort_by", "sort_order", "columns", *_DATE_RANGE}),
    "ProfitAndLoss": frozenset({
        "customer", "qzurl", "accounting_method", "adjusted_gain_loss", "class",
        "item", "sort_order", "summarize_column_by", "department", "vendor",
        *_DATE_RANGE,
    }),
    "ProfitAndLossDetail": frozenset({
        "customer", "account", "accounting_method", "adjusted_gain_loss", "class",
        "sort_by", "payment_method", "sort_order", "employee", "department",
        "vendor", "account_type", "columns", *_DATE_RANGE,
    }),
    "TaxSummary": frozenset({"agency_id", "accounting_method", "sort_order", *_DATE_RANGE}),
    "TransactionList": frozenset({"customer", "vendor", *_TXN_LIST}),
    "TrialBalance": frozenset({
        "accounting_method", "sort_order", "summarize_column_by", *_DATE_RANGE,
    }),
    "VendorBalance": frozenset({
        "qzurl", "accounting_method", "date_macro", "appaid", "report_date",
        "sort_order", "summarize_column_by", "department", "vendor",
    }),
    "VendorExpenses": frozenset({
        "customer", "vendor", "class", "sort_order", "summarize_column_by",
        "department", "accounting_method", *_DATE_RANGE,
    }),
}


def unknown_report_params(report_name: str, params: dict[str, str]) -> list[str]:
    """Return parameter names a known report does not accept (empty for unknown reports)."""
    accepted = REPORT_PARAMS.get(report_name)
    if accepted is None:
        return []
    return sorted(name for name in params if name not in accepted and name != "minorversion")
