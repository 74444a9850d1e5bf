"""
Dash dashboard for instructors: overview of all submissions, per-submission
breakdown and report, and report download.

Run with: python main.py dashboard
"""

import pandas as pd
import plotly.express as px
from dash import Dash, dash_table, dcc, html
from dash.dependencies import Input, Output
from flask import Response, abort

from .errors import ReportNotFound, SubmissionNotFound
from .models import Grade, Submission, SubmissionStatus
from .prompts import build_deep_dive_prompt
from .service import GradingService
from .store import SubmissionStore

CARD_STYLE = {
    "flex": "1",
    "textAlign": "center",
    "padding": "20px",
    "backgroundColor": "white",
    "borderRadius": "8px",
    "margin": "10px",
    "boxShadow": "0 2px 4px rgba(0,0,0,0.1)",
}
PANEL_STYLE = {
    "padding": "20px",
    "backgroundColor": "white",
    "margin": "20px",
    "borderRadius": "8px",
    "boxShadow": "0 2px 4px rgba(0,0,0,0.1)",
}

TABLE_COLUMNS = ["ID", "Owner", "Repository", "Type", "Status", "Grade", "Total", "Test", "Quality", "Created"]


def submissions_frame(submissions: list[Submission]) -> pd.DataFrame:
    """One row per submission, newest first, with the columns shown in the table."""
    rows = []
    for s in submissions:
        rows.append({
            "ID": s.id,
            "Owner": s.owner_id,
            "Repository": s.repository_url,
            "Type": s.project_type.value,
            "Status": s.status.value,
            "Grade": s.grade.value,
            "Total": s.scores.total if s.scores else None,
            "Test": s.scores.test if s.scores else None,
            "Quality": s.scores.quality if s.scores else None,
            "Created": s.created_at.strftime("%Y-%m-%d %H:%M"),
        })
    return pd.DataFrame(rows, columns=TABLE_COLUMNS)


def filter_frame(df: pd.DataFrame, status: str | None, grade: str | None, search: str | None) -> pd.DataFrame:
    if status:
        df = df[df["Status"] == status]
    if grade:
        df = df[df["Grade"] == grade]
    if search:
        needle = search.lower()
        mask = df["Repository"].str.lower().str.contains(needle, regex=False) | df["Owner"].str.lower().str.contains(needle, regex=False)
        df = df[mask]
    return df


def _stat_card(value: str, label: str, color: str) -> html.Div:
    return html.Div([
        html.H3(value, style={"color": color, "margin": "0"}),
        html.P(label, style={"color": "#7f8c8d", "margin": "0"}),
    ], style=CARD_STYLE)


def _scores_figure(df: pd.DataFrame):
    graded = df.dropna(subset=["Total"])
    return px.bar(
        graded.sort_values("Total", ascending=False),
        x="ID",
        y="Total",
        color="Grade",
        color_discrete_map={"pass": "#27ae60", "fail": "#e74c3c"},
        hover_data=["Repository", "Owner"],
        title="Total Score by Submission",
    ).update_layout(xaxis_tickangle=-45, plot_bgcolor="white", yaxis_title="Score", yaxis_range=[0, 100])


def _layout(store: SubmissionStore) -> html.Div:
    submissions = store.all()
    df = submissions_frame(submissions)

    graded = df.dropna(subset=["Total"])
    avg_score = graded["Total"].mean() if not graded.empty else 0
    pass_count = int((df["Grade"] == Grade.PASS.value).sum())
    fail_count = int((df["Grade"] == Grade.FAIL.value).sum())
    failed_runs = int((df["Status"] == SubmissionStatus.FAILED.value).sum())

    return html.Div([
        html.Div([
            html.H1("Repository Grader Dashboard", style={"color": "#2c3e50", "marginBottom": "5px"}),
            html.P(f"Total Submissions: {len(submissions)}", style={"color": "#7f8c8d", "fontSize": "14px"}),
        ], style={"textAlign": "center", "padding": "20px", "backgroundColor": "#ecf0f1"}),

        html.Div([
            _stat_card(f"{avg_score:.1f}", "Average Score", "#3498db"),
            _stat_card(str(pass_count), "Passed", "#27ae60"),
            _stat_card(str(fail_count), "Failed Grade", "#e74c3c"),
            _stat_card(str(failed_runs), "Failed Runs", "#9b59b6"),
        ], style={"display": "flex", "justifyContent": "center", "padding": "10px 20px"}),

        html.Div([dcc.Graph(id="scores-bar", figure=_scores_figure(df))], style={"padding": "10px 20px"}),

        html.Div([
            html.H3("Submissions", style={"color": "#2c3e50", "marginBottom": "10px"}),
            html.Div([
                dcc.Dropdown(
                    id="status-filter",
                    options=[{"label": s.value, "value": s.value} for s in SubmissionStatus],
                    placeholder="All statuses",
                    style={"width": "200px", "marginRight": "10px"},
                ),
                dcc.Dropdown(
                    id="grade-filter",
                    options=[{"label": g.value, "value": g.value} for g in Grade],
                    placeholder="All grades",
                    style={"width": "200px", "marginRight": "10px"},
                ),
                dcc.Input(id="search", type="text", placeholder="Search repository or owner", style={"width": "300px", "padding": "8px"}),
            ], style={"display": "flex", "marginBottom": "10px"}),
            dash_table.DataTable(
                id="submissions-table",
                columns=[{"name": col, "id": col} for col in TABLE_COLUMNS],
                data=df.round(2).to_dict("records"),
                sort_action="native",
                filter_action="native",
                row_selectable="single",
                page_size=25,
                style_table={"overflowX": "auto"},
                style_cell={"textAlign": "left", "padding": "10px", "fontSize": "14px"},
                style_header={"backgroundColor": "#3498db", "color": "white", "fontWeight": "bold"},
                style_data_conditional=[
                    {"if": {"filter_query": "{Status} = failed"}, "backgroundColor": "#fadbd8"},
                    {"if": {"filter_query": "{Grade} = pass"}, "backgroundColor": "#d5f5e3"},
                ],
            ),
        ], style=PANEL_STYLE),

        html.Div(id="detail-section", style=PANEL_STYLE),
    ], style={"fontFamily": "Arial, sans-serif", "backgroundColor": "#f5f6fa", "minHeight": "100vh"})


def render_detail(submission: Submission) -> list:
    """Breakdown, metadata, deep dive prompt and report of one submission."""
    children = [
        html.H3(f"Submission {submission.id}", style={"color": "#2c3e50"}),
        html.P([html.Strong("Repository: "), submission.repository_url]),
        html.P([html.Strong("Status: "), submission.status.value, "  ", html.Strong("Grade: "), submission.grade.value]),
    ]

    if submission.error:
        children.append(html.P(submission.error, style={"color": "#e74c3c", "whiteSpace": "pre-wrap"}))

    if submission.scores:
        children.append(html.H5(f"Total: {submission.scores.total:.1f}/100"))
        children.append(html.Ul([
            html.Li(f"{b.category}: {b.score:g}/{b.max_score:g} - {b.feedback}")
            for b in submission.scores.breakdown
        ]))

    results = submission.metadata.test_results
    telemetry = submission.metadata.ai_analysis
    children.append(html.P(
        f"Tests: {results.passed}/{results.total} in {results.duration:.1f}s | "
        f"Model: {telemetry.model_used} ({telemetry.prompt_tokens}+{telemetry.completion_tokens} tokens, "
        f"{telemetry.analysis_time:.1f}s) | Dependencies: {len(submission.metadata.dependencies)}",
        style={"color": "#7f8c8d"},
    ))
    if telemetry.reviewer_test_score is not None:
        children.append(html.P(f"Reviewer's view of the tests: {telemetry.reviewer_test_score:g}/100", style={"color": "#7f8c8d"}))

    if submission.report is not None:
        children.append(html.A(
            "Download report",
            href=f"/reports/{submission.id}.md",
            style={"display": "inline-block", "marginBottom": "10px"},
        ))
        children.append(html.H5("Deep dive prompt"))
        children.append(dcc.Textarea(
            value=build_deep_dive_prompt(submission.repository_url, submission.report),
            readOnly=True,
            style={"width": "100%", "height": "120px", "padding": "10px", "borderRadius": "5px", "border": "1px solid #ddd"},
        ))
        children.append(html.H3("Report", style={"color": "#2c3e50", "marginTop": "20px"}))
        children.append(dcc.Markdown(submission.report, style={"padding": "20px", "border": "1px solid #eee", "borderRadius": "5px"}))

    return children


def create_dashboard(store: SubmissionStore) -> Dash:
    """
    Create the Dash app over a submission store.

    The layout is rebuilt on every page load so new submissions show up.

    Args:
        store: Store to read submissions from.
    """
    app = Dash(__name__, suppress_callback_exceptions=True)

    @app.server.route("/reports/<submission_id>.md")
    def download_report(submission_id: str):
        try:
            report = store.get_report(submission_id)
        except (SubmissionNotFound, ReportNotFound):
            abort(404)
        filename = GradingService.report_filename(submission_id)
        return Response(
            report,
            mimetype="text/markdown",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    app.layout = lambda: _layout(store)

    @app.callback(
        Output("submissions-table", "data"),
        Output("submissions-table", "selected_rows"),
        Input("status-filter", "value"),
        Input("grade-filter", "value"),
        Input("search", "value"),
    )
    def update_table(status, grade, search):
        df = filter_frame(submissions_frame(store.all()), status, grade, search)
        return df.round(2).to_dict("records"), []

    @app.callback(
        Output("detail-section", "children"),
        Input("submissions-table", "selected_rows"),
        Input("submissions-table", "data"),
    )
    def update_detail(selected_rows, data):
        if not selected_rows or not data:
            return html.P("Select a submission to view its breakdown and report.")

        submission_id = data[selected_rows[0]]["ID"]
        try:
            submission = store.get(submission_id)
        except SubmissionNotFound:
            return html.P("Submission not found.")
        return render_detail(submission)

    return app
