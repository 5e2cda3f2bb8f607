from __future__ import annotations

import logging
import os
import uuid
import tempfile
from datetime import date
from io import BytesIO
from typing import Optional, Tuple

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.platypus import (
    SimpleDocTemplate,
    Paragraph,
    Spacer,
    Table,
    TableStyle,
    PageBreak,
    Flowable,
)

from velocity_agent.calculator import (
    STRATEGY_BASELINE,
    STRATEGY_EXTRA_PAYMENT,
    STRATEGY_INVESTMENT,
    STRATEGY_VELOCITY,
    AggregateReport,
    CreditLineParams,
    LoanParams,
)


logger = logging.getLogger(__name__)

# --- Setup Fonts and Colors ---

FONT_NAME = "STSong-Light"
FONT_NAME_BOLD = "STSong-Light"  # CID 字体使用 <b> 标签加粗
NUM_FONT = "Helvetica"  # 数字/英文使用西文字体，避免拥挤
pdfmetrics.registerFont(UnicodeCIDFont(FONT_NAME))

PALETTE = {
    "primary_text": "#1E293B",
    "secondary_text": "#64748B",
    "accent_green": "#10B981",
    "accent_blue": "#3B82F6",
    "accent_purple": "#8B5CF6",
    "highlight_bg": "#F1F5F9",
    "border": "#E2E8F0",
    "warning": "#EF4444",
    "white": "#FFFFFF",
    "dark_header": "#0F172A",
}

STRATEGY_CN = {
    STRATEGY_BASELINE: "原方案",
    STRATEGY_EXTRA_PAYMENT: "每月多还",
    STRATEGY_VELOCITY: "Velocity Banking",
    STRATEGY_INVESTMENT: "改为定投",
}


def _fmt_money_font(v: float) -> str:
    return f"<font name='{NUM_FONT}'>${v:,.2f}</font>"


def _fmt_percent_font(rate: float) -> str:
    # rate 为小数，例如 0.063
    return f"<font name='{NUM_FONT}'>{rate * 100:.2f}%</font>"


def _months_to_years_months(m: int) -> Tuple[int, int]:
    years = m // 12
    months = m % 12
    return years, months


def _fmt_duration(m: int) -> str:
    y, left = _months_to_years_months(m)
    return f"{m} 期（约 {y} 年 {left} 个月）"


def _score_label(saved: float, baseline_interest: float) -> str:
    if baseline_interest <= 0 or saved <= 0:
        return "效果有限（节省利息较少）"
    ratio = saved / baseline_interest
    if ratio >= 0.5:
        return "强烈建议（节省过半利息）"
    if ratio >= 0.25:
        return "建议执行（省钱效率较高）"
    if ratio >= 0.1:
        return "可考虑（收益一般）"
    return "效果有限（节省利息较少）"


class PageHeader(Flowable):
    """一条水平分割线。"""

    def __init__(self, width, height=0):
        super().__init__()
        self.width = width
        self.height = height

    def draw(self):
        self.canv.setStrokeColor(colors.HexColor(PALETTE["border"]))
        self.canv.setLineWidth(0.4)
        self.canv.line(0, self.height, self.width, self.height)


def _header_footer(canvas, doc):
    """每页页眉页脚。"""
    canvas.saveState()
    header_text = "Velocity Agent ▲ 还款策略对比"
    canvas.setFont(FONT_NAME, 9)
    canvas.setFillColor(colors.HexColor(PALETTE["secondary_text"]))
    canvas.setStrokeColor(colors.HexColor(PALETTE["border"]))
    canvas.setLineWidth(0.4)
    canvas.line(doc.leftMargin, doc.height + doc.topMargin - 9 * mm, doc.width + doc.leftMargin, doc.height + doc.topMargin - 9 * mm)
    canvas.drawString(doc.leftMargin, doc.height + doc.topMargin - 7 * mm, header_text)

    footer_text = f"生成日期: {date.today().strftime('%Y-%m-%d')}"
    canvas.setFont(FONT_NAME, 8)
    canvas.drawString(doc.leftMargin, 10 * mm, footer_text)
    canvas.drawRightString(doc.width + doc.leftMargin, 10 * mm, f"第 {doc.page} 页")
    canvas.restoreState()


def build_pdf(
    *,
    report: AggregateReport,
    loan: LoanParams,
    line: CreditLineParams,
    investment_return: float,
) -> bytes:
    """根据 simulate_all_strategies 的汇总结果生成 PDF 简报，返回二进制。

    只展示汇总数字（总利息、结清月数、节省额），不输出逐月还款明细。
    """
    styles = getSampleStyleSheet()

    meta_style = ParagraphStyle(
        "meta_cn",
        parent=styles["BodyText"],
        fontName=FONT_NAME,
        fontSize=9.5,
        leading=14.5,
        textColor=colors.HexColor(PALETTE["secondary_text"]),
    )

    base_style = ParagraphStyle(
        "base_cn",
        parent=styles["BodyText"],
        fontName=FONT_NAME,
        fontSize=10.2,
        leading=19,
        wordWrap="CJK",
        textColor=colors.HexColor(PALETTE["primary_text"]),
    )

    title_style = ParagraphStyle(
        "title_cn",
        parent=styles["Title"],
        fontName=FONT_NAME_BOLD,
        fontSize=25,
        leading=33,
        textColor=colors.HexColor(PALETTE["primary_text"]),
        spaceAfter=10,
    )

    h2_style = ParagraphStyle(
        "h2_cn",
        parent=styles["Heading2"],
        fontName=FONT_NAME_BOLD,
        fontSize=16.5,
        leading=23,
        textColor=colors.HexColor(PALETTE["primary_text"]),
        spaceBefore=8,
        spaceAfter=8,
    )

    big_green_style = ParagraphStyle(
        "big_green",
        parent=styles["Title"],
        fontName=NUM_FONT,
        fontSize=40,
        leading=48,
        textColor=colors.HexColor(PALETTE["accent_green"]),
        alignment=1,
        spaceBefore=6,
        spaceAfter=6,
    )

    tag_style = ParagraphStyle(
        "tag",
        parent=styles["BodyText"],
        fontName=FONT_NAME,
        fontSize=12,
        leading=16,
        textColor=colors.HexColor(PALETTE["accent_green"]),
        backColor=colors.HexColor("#ECFDF3"),
        borderPadding=7,
        alignment=1,
        spaceAfter=8,
    )

    money_right = ParagraphStyle(name="sum_money", parent=base_style, fontName=NUM_FONT, alignment=2)

    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=32 * mm,
        bottomMargin=22 * mm,
        title="Velocity Agent - 还款策略对比报告",
        author="Velocity Agent",
    )

    baseline = report.baseline
    extra = report.extra_payment
    velocity = report.velocity
    investment = report.investment
    best_paydown = report.best_paydown
    best_saved = best_paydown.comparison.interest_saved if best_paydown.comparison else 0.0

    story = []

    # -------------------- 第 1 页：核心摘要 --------------------
    story.append(Spacer(1, 3 * mm))
    story.append(Paragraph("<b>Velocity Agent ▲ 还款策略对比</b>", title_style))
    story.append(
        Paragraph(
            "原方案 · 每月多还 · Velocity Banking · 改为定投",
            ParagraphStyle(name="subtitle_cn", parent=base_style, textColor=colors.HexColor(PALETTE["secondary_text"]), fontSize=10.5, leading=16),
        )
    )

    story.append(Paragraph(f"生成日期：{date.today().strftime('%Y-%m-%d')}", meta_style))
    story.append(PageHeader(doc.width))
    story.append(Spacer(1, 6 * mm))

    # 信息卡片：房贷 + HELOC + 定投假设
    info_style = ParagraphStyle("info_cn", parent=base_style, leading=17)
    info_data = [
        ["房贷信息", "HELOC 设置", "定投假设"],
        [
            Paragraph(
                f"贷款余额：{_fmt_money_font(float(loan.principal))}<br/>"
                f"年利率：{_fmt_percent_font(float(loan.annual_rate))}<br/>"
                f"剩余期限：{int(loan.term_months)} 期<br/>"
                f"月供：{_fmt_money_font(baseline.monthly_payment)}",
                info_style,
            ),
            Paragraph(
                f"年利率：{_fmt_percent_font(float(line.annual_rate))}<br/>"
                f"单次提取：{_fmt_money_font(float(line.chunk_amount))}<br/>"
                f"每月偿还：{_fmt_money_font(float(line.monthly_payment))}<br/>"
                f"循环提取：{'是' if line.repeat_chunks else '否'}",
                info_style,
            ),
            Paragraph(
                f"每月投入：{_fmt_money_font(float(line.monthly_payment))}<br/>"
                f"预期年化：{_fmt_percent_font(float(investment_return))}<br/>"
                f"定投期限：{investment.total_months} 期",
                info_style,
            ),
        ],
    ]

    info_table = Table(info_data, colWidths=[58 * mm, 58 * mm, 54 * mm])
    info_table.setStyle(
        TableStyle(
            [
                ("FONT", (0, 0), (-1, -1), FONT_NAME, 9.7),
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(PALETTE["highlight_bg"])),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.HexColor(PALETTE["secondary_text"])),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("LINEBELOW", (0, 0), (-1, 0), 1, colors.HexColor(PALETTE["border"])),
                ("BOX", (0, 0), (-1, -1), 0.8, colors.HexColor(PALETTE["border"])),
                ("INNERGRID", (0, 0), (-1, -1), 0.25, colors.HexColor(PALETTE["border"])),
                ("PADDING", (0, 0), (-1, -1), 10),
            ]
        )
    )
    story.append(info_table)

    story.append(Spacer(1, 6 * mm))

    story.append(
        Paragraph(
            f"最佳还款方案（{STRATEGY_CN[best_paydown.key]}）预计为您节省",
            ParagraphStyle(name="saving_title_cn", parent=base_style, alignment=1, fontSize=11),
        )
    )
    story.append(Paragraph(_fmt_money_font(best_saved), big_green_style))
    story.append(Paragraph(_score_label(best_saved, baseline.total_interest), tag_style))
    story.append(Spacer(1, 4 * mm))

    summary_data = [
        ["方案", "结清时间", "总利息", "节省利息"],
        [
            STRATEGY_CN[STRATEGY_BASELINE],
            Paragraph(_fmt_duration(baseline.total_months), base_style),
            Paragraph(_fmt_money_font(baseline.total_interest), money_right),
            Paragraph(_fmt_money_font(0.0), money_right),
        ],
        [
            STRATEGY_CN[STRATEGY_EXTRA_PAYMENT],
            Paragraph(_fmt_duration(extra.total_months), base_style),
            Paragraph(_fmt_money_font(extra.total_interest), money_right),
            Paragraph(_fmt_money_font(report.extra_vs_baseline.interest_saved), money_right),
        ],
        [
            STRATEGY_CN[STRATEGY_VELOCITY],
            Paragraph(_fmt_duration(velocity.total_months), base_style),
            Paragraph(_fmt_money_font(velocity.total_interest), money_right),
            Paragraph(_fmt_money_font(report.velocity_vs_baseline.interest_saved), money_right),
        ],
    ]

    t = Table(summary_data, colWidths=[38 * mm, 62 * mm, 35 * mm, 35 * mm])
    t.setStyle(
        TableStyle(
            [
                ("FONT", (0, 0), (-1, -1), FONT_NAME, 10.2),
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(PALETTE["dark_header"])),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.HexColor(PALETTE["white"])),
                ("ALIGN", (2, 1), (3, -1), "RIGHT"),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                ("LINEBELOW", (0, 0), (-1, 0), 1.5, colors.HexColor(PALETTE["dark_header"])),
                ("LINEBELOW", (0, -1), (-1, -1), 0.8, colors.HexColor(PALETTE["border"])),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.HexColor("#FFFFFF"), colors.HexColor(PALETTE["highlight_bg"])]),
                ("PADDING", (0, 0), (-1, -1), 9),
                ("GRID", (0, 0), (-1, -1), 0, colors.transparent),
            ]
        )
    )
    story.append(Spacer(1, 5 * mm))
    story.append(t)

    # Velocity Banking 利息拆分
    story.append(Spacer(1, 8))
    story.append(
        Paragraph(
            f"<b>Velocity Banking 利息拆分：</b>房贷利息 {_fmt_money_font(velocity.mortgage_interest)}，"
            f"HELOC 利息 {_fmt_money_font(velocity.heloc_interest)}，共提取 HELOC {velocity.chunks_drawn} 次。"
            f"相比每月多还，{'多' if report.velocity_vs_extra.interest_saved >= 0 else '少'}节省 "
            f"{_fmt_money_font(abs(report.velocity_vs_extra.interest_saved))}。",
            ParagraphStyle(
                name="velocity_tip",
                parent=base_style,
                fontSize=9.6,
                leading=13.5,
                backColor=colors.HexColor(PALETTE["highlight_bg"]),
                borderPadding=8,
            ),
        )
    )

    capped = [
        STRATEGY_CN[key]
        for key, result in ((STRATEGY_BASELINE, baseline), (STRATEGY_EXTRA_PAYMENT, extra), (STRATEGY_VELOCITY, velocity))
        if result.reached_month_cap
    ]
    if capped:
        story.append(Spacer(1, 8))
        story.append(
            Paragraph(
                f"<font color='{PALETTE['warning']}'><b>注意：</b>{'、'.join(capped)} 在模拟上限内未能结清，"
                "参数可能无法正常摊还，请检查利率与月供。</font>",
                base_style,
            )
        )

    story.append(PageBreak())

    # -------------------- 第 2 页：还贷 vs 定投 --------------------
    story.append(Paragraph("还贷 vs 定投", h2_style))
    story.append(PageHeader(doc.width))

    if investment.total_invested <= 0:
        story.append(
            Paragraph(
                "每月追加金额为 0，未进行定投对比。通用建议：在高利率贷款期内优先还贷，"
                "当贷款利率低于稳健投资收益时，可考虑将资金用于投资或保留流动性。",
                base_style,
            )
        )
    else:
        story.append(
            Paragraph(
                f"<b>定投收益模拟：</b>假设不多还贷款，每月将 {_fmt_money_font(float(line.monthly_payment))} "
                f"投入年化 <b>{_fmt_percent_font(float(investment_return))}</b> 的投资，"
                f"{investment.total_months} 期后累计投入 {_fmt_money_font(investment.total_invested)}，"
                f"市值约 {_fmt_money_font(investment.total_value)}，收益约 <b>{_fmt_money_font(investment.investment_gains)}</b>。",
                base_style,
            )
        )
        story.append(Spacer(1, 6))
        story.append(
            Paragraph(
                f"<b>还贷节省收益：</b>{STRATEGY_CN[best_paydown.key]}预计节省利息约 <b>{_fmt_money_font(best_saved)}</b>。",
                base_style,
            )
        )
        story.append(Spacer(1, 10))

        diff = report.investment_net_benefit
        if report.best_overall.kind == "investment":
            story.append(
                Paragraph(
                    f"<b>结论：<font color='{PALETTE['accent_blue']}'>定投比还贷多赚约 {_fmt_money_font(diff)}</font></b>。"
                    "<br/><br/>若您能接受市场波动、且有足够风险承受能力，可考虑按原月供还贷，将追加资金用于投资。",
                    base_style,
                )
            )
        else:
            story.append(
                Paragraph(
                    f"<b>结论：<font color='{PALETTE['accent_green']}'>还贷比定投多赚约 {_fmt_money_font(-diff)}</font></b>。"
                    f"<br/><br/>若您追求确定性，建议采用{STRATEGY_CN[best_paydown.key]}方案。",
                    base_style,
                )
            )

    story.append(Spacer(1, 12 * mm))
    story.append(PageHeader(doc.width))
    story.append(Spacer(1, 4 * mm))
    story.append(
        Paragraph(
            "<b>免责声明：</b>本报告基于您提供的数据进行数学模拟，结果仅供参考。未考虑税费、利率浮动、HELOC 额度限制与投资波动。"
            "如需执行具体操作，请以贷款机构出具的官方文件为准。",
            ParagraphStyle(
                "disclaimer",
                parent=base_style,
                fontSize=8.5,
                leading=14,
                textColor=colors.HexColor(PALETTE["secondary_text"]),
            ),
        )
    )

    doc.build(story, onFirstPage=_header_footer, onLaterPages=_header_footer)
    return buf.getvalue()


def generate_pdf(
    *,
    report: AggregateReport,
    loan: LoanParams,
    line: CreditLineParams,
    investment_return: float,
    output_dir: Optional[str] = None,
) -> str:
    """生成 PDF 文件，返回文件路径。"""
    # 允许不传 output_dir，此时生成到系统临时目录
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        pdf_path = os.path.join(output_dir, f"report_{uuid.uuid4().hex}.pdf")
    else:
        tmp = tempfile.NamedTemporaryFile(prefix="report_", suffix=".pdf", delete=False)
        pdf_path = tmp.name
        tmp.close()

    pdf_bytes = build_pdf(report=report, loan=loan, line=line, investment_return=investment_return)
    with open(pdf_path, "wb") as f:
        f.write(pdf_bytes)
    logger.info("report written to %s (%d bytes)", pdf_path, len(pdf_bytes))
    return pdf_path
