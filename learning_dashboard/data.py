# data.py
"""Demo workspace loaded by ``flask seed-demo``."""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class SeedUser:
    username: str
    email: str
    first_name: str
    last_name: str
    role: str
    password: str = 'learning123'


@dataclass
class SeedSubject:
    name: str
    color: str


@dataclass
class SeedTask:
    title: str
    subject: str
    assignee: Optional[str]
    status: str = 'todo'
    estimated_time: Optional[str] = None
    time_spent: Optional[str] = None
    progress: int = 0


@dataclass
class SeedSprint:
    name: str
    start: str
    end: str
    description: str
    state: str = 'draft'
    tasks: List[SeedTask] = field(default_factory=list)


@dataclass
class SeedWorkspace:
    name: str
    description: str
    facilitator: SeedUser
    learners: List[SeedUser]
    subjects: List[SeedSubject]
    sprints: List[SeedSprint]
    backlog: List[SeedTask] = field(default_factory=list)


demo_workspace = SeedWorkspace(
    name="Rivera Family School",
    description="Weekly learning sprints for the Rivera kids.",
    facilitator=SeedUser("maria", "maria@example.com", "Maria", "Rivera", "facilitator"),
    learners=[
        SeedUser("sofia", "sofia@example.com", "Sofia", "Rivera", "learner"),
        SeedUser("leo", "leo@example.com", "Leo", "Rivera", "learner"),
    ],
    subjects=[
        SeedSubject("Math", "bg-blue-500 text-white"),
        SeedSubject("Science", "bg-teal-500 text-black"),
        SeedSubject("English", "bg-red-500 text-white"),
        SeedSubject("History", "bg-indigo-500 text-white"),
    ],
    sprints=[
        SeedSprint(
            name="Week 1 – Getting Started",
            start="2026-09-07",
            end="2026-09-11",
            description="Settle into the routine and review last year's material.",
            state="completed",
            tasks=[
                SeedTask("Multiplication tables review", "Math", "sofia", "done", "1h", "50min", 100),
                SeedTask("Read chapter 1 of Charlotte's Web", "English", "leo", "done", "45min", "1h", 100),
                SeedTask("Plant life cycle poster", "Science", "sofia", "done", "2h", "1.5h", 100),
            ],
        ),
        SeedSprint(
            name="Week 2 – Fractions & Forces",
            start="2026-09-14",
            end="2026-09-18",
            description="Introduce fractions and simple machines.",
            state="active",
            tasks=[
                SeedTask("Fraction strips worksheet", "Math", "sofia", "in_progress", "45min", "20min", 40),
                SeedTask("Simple machines scavenger hunt", "Science", "leo", "todo", "1h"),
                SeedTask("Ancient Egypt timeline", "History", "leo", "done", "1h", "1h", 100),
                SeedTask("Spelling list 2", "English", "sofia", "todo", "30min"),
            ],
        ),
        SeedSprint(
            name="Week 3 – Weather Watch",
            start="2026-09-21",
            end="2026-09-25",
            description="Track the weather every day and graph it.",
        ),
    ],
    backlog=[
        SeedTask("Long division practice", "Math", "leo", estimated_time="1h"),
        SeedTask("Book report draft", "English", None, estimated_time="2h"),
    ],
)
