"""Chinese confirmation texts for chat / HTTP transports."""
from .ai_parser import ParseResult
from .recurrence import describe_rule
from .task_parser import Priority

PRIORITY_LABELS = {
    Priority.URGENT: "🔴 紧急",
    Priority.HIGH: "🟡 重要",
    Priority.MEDIUM: "🔵 一般",
    Priority.LOW: "🟢 低优先级",
}


def format_task_created(result: ParseResult) -> str:
    task = result.task
    lines = ["✅ 任务创建成功！", "", f"📝 任务标题：{task.title}"]

    if task.description:
        lines.append(f"📄 任务描述：{task.description}")
    if task.due_date:
        d = task.due_date
        lines.append(f"📅 截止日期：{d.year}年{d.month}月{d.day}日")
    if task.due_time:
        lines.append(f"⏰ 时间：{task.due_time.strftime('%H:%M')}")
    if task.priority:
        lines.append(f"⭐ 优先级：{PRIORITY_LABELS[task.priority]}")
    if task.tag_names:
        lines.append(f"🏷️ 标签：{', '.join(task.tag_names)}")
    if task.is_recurring and task.recurring_rule:
        lines.append(f"🔄 重复：{describe_rule(task.recurring_rule)}")

    if result.source == "fallback":
        lines += ["", "⚠️ 智能解析暂不可用，以上内容由本地规则识别，请确认是否正确"]
    return "\n".join(lines)


def format_parse_failure(raw: str) -> str:
    return (
        "😔 抱歉，这条消息暂时没能创建任务：\n"
        f"「{raw.strip()}」\n\n"
        "请稍后再试，或换一种说法，例如：明天下午3点开会 #工作"
    )


def format_recurring_stats(stats: dict) -> str:
    return (
        "📊 周期任务统计\n"
        f"🔁 周期任务：{stats.get('totalTemplates', 0)}\n"
        f"📋 已生成实例：{stats.get('totalInstances', 0)}\n"
        f"📅 即将到期：{stats.get('upcomingInstances', 0)}\n"
        f"⏳ 已过期未完成：{stats.get('overdueInstances', 0)}"
    )
